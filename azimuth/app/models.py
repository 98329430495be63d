from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, NamedTuple

DEFAULT_FONT_FAMILY = "'SF Mono', 'Fira Code', 'Consolas', monospace"
DEFAULT_NOTEBOOK_ICON = "📓"
DEFAULT_NOTEBOOK_COLOR = "#cdd6f4"


@dataclass(frozen=True)
class NotebookNode:
    """A folder in the workspace hierarchy.

    ``children`` is empty for a leaf (or a folder not yet known to be
    expandable), holds a single sentinel (empty id) while the children are
    not loaded, and otherwise holds the loaded child folders.
    """

    id: str
    name: str
    path: str
    children: tuple[NotebookNode, ...] = ()

    @classmethod
    def from_dict(cls, payload: dict) -> NotebookNode:
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            path=str(payload.get("path") or ""),
            children=tuple(cls.from_dict(c) for c in payload.get("children") or []),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass(frozen=True)
class Note:
    id: str
    title: str
    folder: str
    content: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def note_path(self) -> str:
        """Key used by favorites and tags: ``folder/noteId``."""
        return f"{self.folder}/{self.id}"

    @classmethod
    def from_dict(cls, payload: dict) -> Note:
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            folder=str(payload.get("folder") or ""),
            content=str(payload.get("content") or ""),
            created_at=str(payload.get("created_at") or ""),
            updated_at=str(payload.get("updated_at") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "folder": self.folder,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class TabKey(NamedTuple):
    note_id: str
    folder: str

    @classmethod
    def for_note(cls, note: Note) -> TabKey:
        return cls(note.id, note.folder)


@dataclass(frozen=True)
class OpenTab:
    note: Note
    content: str
    is_dirty: bool = False

    @property
    def key(self) -> TabKey:
        return TabKey.for_note(self.note)

    def with_content(self, content: str) -> OpenTab:
        return replace(self, content=content, is_dirty=content != self.note.content)


@dataclass(frozen=True)
class NotebookStyle:
    icon: str = DEFAULT_NOTEBOOK_ICON
    color: str = DEFAULT_NOTEBOOK_COLOR


@dataclass
class WorkspaceSettings:
    font_family: str = DEFAULT_FONT_FAMILY
    font_size: int = 14
    sidebar_width: int = 200
    notes_width: int = 200
    favorites: list[str] = field(default_factory=list)
    tags: dict[str, list[str]] = field(default_factory=dict)
    notebook_styles: dict[str, NotebookStyle] = field(default_factory=dict)
    pinned_folders: list[str] = field(default_factory=list)
    auto_save: bool = True

    @classmethod
    def from_dict(cls, payload: dict | None) -> WorkspaceSettings:
        """Build settings from stored JSON; missing keys keep their defaults."""
        payload = payload or {}
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {k: v for k, v in payload.items() if k in known}
        styles = values.get("notebook_styles") or {}
        values["notebook_styles"] = {
            path: NotebookStyle(
                icon=str(style.get("icon") or DEFAULT_NOTEBOOK_ICON),
                color=str(style.get("color") or DEFAULT_NOTEBOOK_COLOR),
            )
            for path, style in styles.items()
            if isinstance(style, dict)
        }
        values["favorites"] = list(values.get("favorites") or [])
        values["pinned_folders"] = list(values.get("pinned_folders") or [])
        values["tags"] = {k: list(v) for k, v in (values.get("tags") or {}).items()}
        return cls(**values)

    def to_dict(self) -> dict:
        return {
            "font_family": self.font_family,
            "font_size": self.font_size,
            "sidebar_width": self.sidebar_width,
            "notes_width": self.notes_width,
            "favorites": list(self.favorites),
            "tags": {k: list(v) for k, v in self.tags.items()},
            "notebook_styles": {
                path: {"icon": s.icon, "color": s.color} for path, s in self.notebook_styles.items()
            },
            "pinned_folders": list(self.pinned_folders),
            "auto_save": self.auto_save,
        }


@dataclass(frozen=True)
class SearchHit:
    note_id: str
    title: str
    folder_path: str
    folder_name: str
    snippet: str = ""
    match_count: int = 0

    @classmethod
    def from_dict(cls, payload: dict) -> SearchHit:
        return cls(
            note_id=str(payload["note_id"]),
            title=str(payload.get("note_title") or ""),
            folder_path=str(payload["notebook_path"]),
            folder_name=str(payload.get("notebook_name") or ""),
            snippet=str(payload.get("snippet") or ""),
            match_count=int(payload.get("match_count") or 0),
        )

    def to_dict(self) -> dict:
        return {
            "note_id": self.note_id,
            "note_title": self.title,
            "notebook_path": self.folder_path,
            "notebook_name": self.folder_name,
            "snippet": self.snippet,
            "match_count": self.match_count,
        }
