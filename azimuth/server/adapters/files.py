from __future__ import annotations

import datetime as dt
import os
import shutil
from pathlib import Path
from typing import Dict, List

MAX_NOTEBOOKS = 50
MAX_ENTRIES_TO_SCAN = 200
SNIPPET_RADIUS = 50

# Directories never shown as notebooks
IGNORED_DIRS = frozenset(
    {
        ".", "..", ".git", ".svn", ".hg", "node_modules", "target", "build", "dist",
        ".Trash", ".Spotlight-V100", ".fseventsd", "Library", "Applications",
        ".cache", ".npm", ".cargo", ".rustup", ".local", ".config",
        "__pycache__", ".venv", "venv", ".tox", ".pytest_cache",
        ".DS_Store", "Thumbs.db",
    }
)

TEXT_EXTENSIONS = frozenset(
    {
        "md", "markdown", "mdown", "mkd", "txt", "text", "log",
        "json", "yaml", "yml", "toml", "ini", "cfg", "conf", "config",
        "rs", "py", "js", "ts", "jsx", "tsx", "java", "c", "cpp", "h", "hpp",
        "go", "rb", "php", "swift", "kt", "scala", "cs", "fs", "vb",
        "lua", "pl", "pm", "r", "m", "mm", "sql", "sh", "bash", "zsh",
        "fish", "ps1", "psm1", "bat", "cmd",
        "html", "htm", "css", "scss", "sass", "less", "xml", "xsl", "xslt",
        "vue", "svelte", "csv", "tsv",
        "pem", "crt", "cer", "key", "pub",
        "rst", "adoc", "asciidoc", "org", "tex", "latex",
        "env", "gitignore", "dockerignore", "editorconfig", "prettierrc",
        "eslintrc", "babelrc", "nvmrc", "npmrc", "yarnrc",
        "makefile", "cmake", "gradle", "properties",
    }
)
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp", "svg", "bmp", "ico", "tiff", "tif"})
VIDEO_MIME = {
    "mp4": "mp4", "webm": "webm", "mov": "quicktime", "avi": "x-msvideo", "mkv": "x-matroska",
    "m4v": "mp4", "ogv": "ogg", "3gp": "3gpp", "wmv": "x-ms-wmv",
}
AUDIO_MIME = {
    "mp3": "mpeg", "wav": "wav", "ogg": "ogg", "flac": "flac", "aac": "aac",
    "m4a": "mp4", "wma": "x-ms-wma", "opus": "opus",
}


class FileAccessError(RuntimeError):
    pass


def _extension(name: str) -> str:
    suffix = Path(name).suffix
    return suffix[1:].lower() if suffix else ""


def is_text_file(name: str) -> bool:
    ext = _extension(name)
    return not ext or ext in TEXT_EXTENSIONS


def is_image_file(name: str) -> bool:
    return _extension(name) in IMAGE_EXTENSIONS


def resolve_path(root: Path, path: str) -> Path:
    if not path:
        raise FileAccessError("Path must not be empty")
    root = root.resolve()
    target = Path(path).expanduser()
    if not target.is_absolute():
        target = root / target
    target = target.resolve()
    if root not in target.parents and target != root:
        raise FileAccessError("Attempted access outside the workspace root")
    return target


def _note_file(root: Path, folder: str, note_id: str) -> Path:
    if not note_id or "/" in note_id or "\\" in note_id or note_id in (".", ".."):
        raise FileAccessError(f"Invalid note name: {note_id!r}")
    return resolve_path(root, folder) / note_id


def _is_ignored(name: str) -> bool:
    return name.startswith(".") or name in IGNORED_DIRS


def _notebook_dict(path: Path, children: list[dict]) -> Dict:
    return {"id": str(path), "name": path.name, "path": str(path), "children": children}


def _sentinel_dict() -> Dict:
    return {"id": "", "name": "", "path": "", "children": []}


def list_notebooks(root: Path, path: str | None = None) -> List[Dict]:
    """List the folders directly under ``path`` (the root by default).

    Each folder carries a single sentinel child: children are only listed
    when the client expands it.
    """
    target = resolve_path(root, path) if path else root.resolve()
    if not target.exists():
        target.mkdir(parents=True, exist_ok=True)
    notebooks: list[Dict] = []
    try:
        entries = os.scandir(target)
    except OSError:
        return []
    with entries:
        for scanned, entry in enumerate(entries, start=1):
            if scanned > MAX_ENTRIES_TO_SCAN:
                break
            if _is_ignored(entry.name):
                continue
            try:
                if not entry.is_dir():
                    continue
            except OSError:
                continue
            notebooks.append(_notebook_dict(Path(entry.path), [_sentinel_dict()]))
            if len(notebooks) >= MAX_NOTEBOOKS:
                break
    notebooks.sort(key=lambda nb: nb["name"].lower())
    return notebooks


def create_notebook(root: Path, base_path: str, name: str) -> Dict:
    cleaned = (name or "").strip()
    if not cleaned or cleaned in (".", "..") or "/" in cleaned or "\\" in cleaned:
        raise FileAccessError("Notebook name must be a single folder name")
    target = resolve_path(root, base_path) / cleaned
    target.mkdir(parents=True, exist_ok=True)
    return _notebook_dict(target, [])


def import_folder(root: Path, base_path: str, folder_path: str) -> Dict:
    """Copy a folder from anywhere on disk into ``base_path`` as a notebook.

    When a notebook of the same name already exists it is returned as is and
    nothing is copied.
    """
    source = Path(folder_path).expanduser().resolve()
    if not source.is_dir():
        raise FileAccessError(f"Invalid folder path: {folder_path}")
    destination = resolve_path(root, base_path) / source.name
    if source in destination.parents:
        raise FileAccessError("Cannot import a folder into itself")
    if not destination.exists():
        shutil.copytree(source, destination)
    return _notebook_dict(destination, list_notebooks(root, str(destination)))


def _asset_url(path: Path) -> str:
    return f"asset://localhost/{str(path).replace(' ', '%20')}"


def _render_content(path: Path) -> str:
    ext = _extension(path.name)
    url = _asset_url(path)
    if is_text_file(path.name):
        try:
            return path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            return f"[📎 {path.name}]({url})"
    if ext in IMAGE_EXTENSIONS:
        return f"![{path.name}]({url})"
    if ext in VIDEO_MIME:
        return (
            '<video controls width="100%" style="max-height: 80vh;">\n'
            f'  <source src="{url}" type="video/{VIDEO_MIME[ext]}">\n'
            "  Your browser does not support the video tag.\n"
            "</video>"
        )
    if ext in AUDIO_MIME:
        return (
            '<audio controls style="width: 100%;">\n'
            f'  <source src="{url}" type="audio/{AUDIO_MIME[ext]}">\n'
            "  Your browser does not support the audio tag.\n"
            "</audio>"
        )
    if ext == "pdf":
        return f'<iframe src="{url}" width="100%" height="800px" style="border: none;"></iframe>'
    return f"[📎 {path.name}]({url})"


def _iso(timestamp: float) -> str:
    return dt.datetime.fromtimestamp(timestamp, tz=dt.timezone.utc).isoformat()


def list_notes(root: Path, folder: str) -> List[Dict]:
    target = resolve_path(root, folder)
    if not target.exists():
        return []
    notes: list[Dict] = []
    for child in sorted(target.iterdir()):
        if not child.is_file() or child.name.startswith("."):
            continue
        stat = child.stat()
        created = getattr(stat, "st_birthtime", None) or stat.st_ctime
        notes.append(
            {
                "id": child.name,
                "title": child.stem,
                "content": _render_content(child),
                "folder": folder,
                "created_at": _iso(created),
                "updated_at": _iso(stat.st_mtime),
            }
        )
    return notes


def read_note(root: Path, folder: str, note_id: str) -> str:
    target = _note_file(root, folder, note_id)
    try:
        return target.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise FileAccessError("File is not UTF-8 encoded text.") from exc


def save_note(root: Path, folder: str, note_id: str, content: str) -> None:
    target = _note_file(root, folder, note_id)
    if not target.parent.exists():
        raise FileNotFoundError(target.parent)
    target.write_text(content, encoding="utf-8")


def rename_note(root: Path, folder: str, old_id: str, new_id: str) -> None:
    source = _note_file(root, folder, old_id)
    destination = _note_file(root, folder, new_id)
    if not source.exists():
        raise FileNotFoundError(f"File does not exist: {old_id}")
    if destination.exists():
        raise FileExistsError(f"A file with that name already exists: {new_id}")
    source.rename(destination)


def delete_note(root: Path, folder: str, note_id: str) -> None:
    """Delete a note together with its ``<stem>/`` attachment folder."""
    target = _note_file(root, folder, note_id)
    if target.exists():
        target.unlink()
    attachments = target.parent / Path(note_id).stem
    if attachments.is_dir():
        shutil.rmtree(attachments)


def move_note(root: Path, source_folder: str, target_folder: str, note_id: str) -> None:
    source = _note_file(root, source_folder, note_id)
    destination = _note_file(root, target_folder, note_id)
    if not source.exists():
        raise FileNotFoundError(f"File does not exist: {note_id}")
    if not destination.parent.is_dir():
        raise FileNotFoundError(f"Target folder does not exist: {target_folder}")
    if destination.exists():
        raise FileExistsError(f"A file named '{note_id}' already exists in the target folder")
    shutil.move(str(source), str(destination))
    attachments = source.parent / source.stem
    if attachments.is_dir() and not (destination.parent / source.stem).exists():
        shutil.move(str(attachments), str(destination.parent / source.stem))


def move_notebook(root: Path, source_path: str, target_path: str) -> str:
    source = resolve_path(root, source_path)
    target_dir = resolve_path(root, target_path)
    if source == root.resolve():
        raise FileAccessError("Cannot move the workspace root")
    if not source.exists():
        raise FileNotFoundError(f"Source folder does not exist: {source_path}")
    if not source.is_dir():
        raise FileAccessError(f"Source is not a directory: {source_path}")
    if not target_dir.exists():
        raise FileNotFoundError(f"Target folder does not exist: {target_path}")
    if target_dir == source or source in target_dir.parents:
        raise FileAccessError("Cannot move a folder into itself")
    destination = target_dir / source.name
    if destination.exists():
        raise FileExistsError(f"A folder named '{source.name}' already exists in the target location")
    try:
        source.rename(destination)
    except OSError:
        # Cross-device moves cannot rename
        shutil.copytree(source, destination)
        shutil.rmtree(source)
    return str(destination)


def save_attachment(root: Path, folder: str, note_id: str, file_name: str, data: bytes) -> str:
    note_file = _note_file(root, folder, note_id)
    safe_name = Path(file_name).name
    if not safe_name:
        raise FileAccessError("Attachment name must not be empty")
    attachment_dir = note_file.parent / note_file.stem
    attachment_dir.mkdir(parents=True, exist_ok=True)
    target = attachment_dir / safe_name
    target.write_bytes(data)
    return str(target)


def list_attachments(root: Path, folder: str, note_id: str) -> List[str]:
    note_file = _note_file(root, folder, note_id)
    attachment_dir = note_file.parent / note_file.stem
    if not attachment_dir.is_dir():
        return []
    return sorted(p.name for p in attachment_dir.iterdir() if p.is_file())


def _snippet(content: str, content_lower: str, query_lower: str) -> str:
    pos = content_lower.find(query_lower)
    if pos < 0:
        return content[:100]
    start = max(pos - SNIPPET_RADIUS, 0)
    end = min(pos + len(query_lower) + SNIPPET_RADIUS, len(content))
    snippet = content[start:end]
    if start > 0:
        snippet = f"...{snippet}"
    if end < len(content):
        snippet = f"{snippet}..."
    return snippet.replace("\n", " ")


def search_notes(root: Path, base_path: str, query: str) -> List[Dict]:
    if not query.strip():
        return []
    base = resolve_path(root, base_path)
    query_lower = query.lower()
    results: list[Dict] = []
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = [d for d in dirnames if not _is_ignored(d)]
        for name in filenames:
            if name.startswith(".") or not is_text_file(name):
                continue
            path = Path(dirpath) / name
            try:
                content = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            content_lower = content.lower()
            matches = content_lower.count(query_lower) + (1 if query_lower in name.lower() else 0)
            if not matches:
                continue
            results.append(
                {
                    "note_id": name,
                    "note_title": path.stem,
                    "notebook_path": str(path.parent),
                    "notebook_name": path.parent.name,
                    "snippet": _snippet(content, content_lower, query_lower),
                    "match_count": matches,
                }
            )
    results.sort(key=lambda r: r["match_count"], reverse=True)
    return results
