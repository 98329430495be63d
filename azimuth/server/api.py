from __future__ import annotations

import base64
import binascii
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from azimuth.app.models import WorkspaceSettings
from azimuth.server.adapters import files
from azimuth.server.adapters import settings as settings_store
from azimuth.server.adapters.files import FileAccessError
from azimuth.server.state import workspace_state
from azimuth.server.watcher import directory_watcher

_ANSI_BLUE = "\033[94m"
_ANSI_RESET = "\033[0m"

_UNWATCH: Optional[Callable[[], None]] = None


def _debug(message: str) -> None:
    if os.getenv("AZIMUTH_DEBUG_API", "0") not in ("0", "false", "False", ""):
        print(f"{_ANSI_BLUE}[API] {message}{_ANSI_RESET}")


def _get_root() -> Path:
    try:
        return workspace_state.get_root()
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@contextmanager
def _translate_errors():
    try:
        yield
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except FileExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except FileAccessError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OSError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _settings_base(base: str) -> Path:
    root = _get_root()
    with _translate_errors():
        return files.resolve_path(root, base)


def _watch_root(root: Path) -> None:
    global _UNWATCH
    if _UNWATCH is not None:
        _UNWATCH()
        _UNWATCH = None
    if os.getenv("AZIMUTH_DISABLE_WATCH", "0") not in ("0", "false", "False", ""):
        return
    _UNWATCH = directory_watcher.watch(root, workspace_state.bump_version, recursive=True)


def select_root(path: str) -> Path:
    """Make ``path`` the served workspace and start watching it."""
    root = workspace_state.set_root(path)
    _watch_root(root)
    return root


class WorkspaceSelectPayload(BaseModel):
    path: str


class NotebookCreatePayload(BaseModel):
    base_path: str
    name: str = Field(..., min_length=1)


class NotebookMovePayload(BaseModel):
    source_path: str
    target_path: str


class NotebookImportPayload(BaseModel):
    base_path: str
    folder_path: str = Field(..., min_length=1)


class NoteRefPayload(BaseModel):
    folder: str
    note_id: str


class NoteSavePayload(NoteRefPayload):
    content: str


class NoteRenamePayload(BaseModel):
    folder: str
    old_id: str
    new_id: str


class NoteMovePayload(BaseModel):
    source_folder: str
    target_folder: str
    note_id: str


class AttachmentPayload(NoteRefPayload):
    file_name: str
    data: str = Field(..., description="Base64 encoded file contents")


class SettingsPayload(BaseModel):
    base_path: str
    settings: dict


class FavoritePayload(BaseModel):
    base_path: str
    note_path: str


class TagsPayload(BaseModel):
    base_path: str
    note_path: str
    tags: List[str]


app = FastAPI(title="Azimuth Local API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^https?://(127\.0\.0\.1|localhost)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health() -> dict:
    return {"ok": True}


@app.post("/api/workspace/select")
def select_workspace(payload: WorkspaceSelectPayload) -> dict:
    try:
        root = select_root(payload.path)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _debug(f"POST /api/workspace/select root={root}")
    return {"root": str(root), "version": workspace_state.version}


@app.get("/api/workspace/version")
def workspace_version() -> dict:
    _get_root()
    return {"version": workspace_state.version}


@app.get("/api/notebooks")
def list_notebooks(path: Optional[str] = None) -> dict:
    root = _get_root()
    with _translate_errors():
        notebooks = files.list_notebooks(root, path)
    _debug(f"GET /api/notebooks path={path} count={len(notebooks)}")
    return {"root": str(root), "notebooks": notebooks, "version": workspace_state.version}


@app.post("/api/notebooks/create")
def create_notebook(payload: NotebookCreatePayload) -> dict:
    root = _get_root()
    with _translate_errors():
        notebook = files.create_notebook(root, payload.base_path, payload.name)
    workspace_state.bump_version()
    return {"ok": True, "notebook": notebook}


@app.post("/api/notebooks/import")
def import_notebook(payload: NotebookImportPayload) -> dict:
    root = _get_root()
    _debug(f"POST /api/notebooks/import from={payload.folder_path} into={payload.base_path}")
    with _translate_errors():
        notebook = files.import_folder(root, payload.base_path, payload.folder_path)
    workspace_state.bump_version()
    return {"ok": True, "notebook": notebook}


@app.post("/api/notebooks/move")
def move_notebook(payload: NotebookMovePayload) -> dict:
    root = _get_root()
    _debug(f"POST /api/notebooks/move from={payload.source_path} to={payload.target_path}")
    with _translate_errors():
        destination = files.move_notebook(root, payload.source_path, payload.target_path)
    return {"ok": True, "path": destination, "version": workspace_state.bump_version()}


@app.get("/api/notes")
def list_notes(folder: str) -> dict:
    root = _get_root()
    with _translate_errors():
        notes = files.list_notes(root, folder)
    return {"notes": notes}


@app.post("/api/notes/read")
def read_note(payload: NoteRefPayload) -> dict:
    root = _get_root()
    with _translate_errors():
        content = files.read_note(root, payload.folder, payload.note_id)
    return {"content": content}


@app.post("/api/notes/save")
def save_note(payload: NoteSavePayload) -> dict:
    root = _get_root()
    with _translate_errors():
        files.save_note(root, payload.folder, payload.note_id, payload.content)
    _debug(f"POST /api/notes/save {payload.folder}/{payload.note_id} chars={len(payload.content)}")
    return {"ok": True}


@app.post("/api/notes/rename")
def rename_note(payload: NoteRenamePayload) -> dict:
    root = _get_root()
    with _translate_errors():
        files.rename_note(root, payload.folder, payload.old_id, payload.new_id)
    return {"ok": True}


@app.post("/api/notes/delete")
def delete_note(payload: NoteRefPayload) -> dict:
    root = _get_root()
    with _translate_errors():
        files.delete_note(root, payload.folder, payload.note_id)
    return {"ok": True}


@app.post("/api/notes/move")
def move_note(payload: NoteMovePayload) -> dict:
    root = _get_root()
    with _translate_errors():
        files.move_note(root, payload.source_folder, payload.target_folder, payload.note_id)
    return {"ok": True}


@app.post("/api/attachments")
def save_attachment(payload: AttachmentPayload) -> dict:
    root = _get_root()
    try:
        data = base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Attachment data must be base64") from exc
    with _translate_errors():
        path = files.save_attachment(root, payload.folder, payload.note_id, payload.file_name, data)
    return {"ok": True, "path": path}


@app.get("/api/attachments")
def list_attachments(folder: str, note_id: str) -> dict:
    root = _get_root()
    with _translate_errors():
        names = files.list_attachments(root, folder, note_id)
    return {"attachments": names}


@app.get("/api/search")
def search(base: str, q: str = "") -> dict:
    root = _get_root()
    with _translate_errors():
        results = files.search_notes(root, base, q)
    _debug(f"GET /api/search q={q!r} hits={len(results)}")
    return {"results": results}


@app.get("/api/settings")
def get_settings(base: str) -> dict:
    base_path = _settings_base(base)
    try:
        loaded = settings_store.load_settings(base_path)
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=f"Settings file is invalid: {exc}") from exc
    return {"settings": loaded.to_dict()}


@app.put("/api/settings")
def put_settings(payload: SettingsPayload) -> dict:
    base_path = _settings_base(payload.base_path)
    with _translate_errors():
        settings_store.save_settings(base_path, WorkspaceSettings.from_dict(payload.settings))
    return {"ok": True}


@app.post("/api/settings/favorite")
def toggle_favorite(payload: FavoritePayload) -> dict:
    base_path = _settings_base(payload.base_path)
    with _translate_errors():
        updated = settings_store.toggle_favorite(base_path, payload.note_path)
    return {"settings": updated.to_dict()}


@app.get("/api/tags")
def get_tags(base: str, note: str) -> dict:
    return {"tags": settings_store.get_note_tags(_settings_base(base), note)}


@app.post("/api/tags")
def set_tags(payload: TagsPayload) -> dict:
    base_path = _settings_base(payload.base_path)
    with _translate_errors():
        updated = settings_store.set_note_tags(base_path, payload.note_path, payload.tags)
    return {"settings": updated.to_dict()}


@app.get("/api/tags/all")
def all_tags(base: str) -> dict:
    return {"tags": settings_store.get_all_tags(_settings_base(base))}


@app.get("/api/tags/notes")
def notes_by_tag(base: str, tag: str) -> dict:
    return {"tag": tag, "notes": settings_store.get_notes_by_tag(_settings_base(base), tag)}


def get_app() -> FastAPI:
    return app
