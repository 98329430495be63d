"""Per-workspace settings stored as ``.azimuth_settings.json`` in the root."""
from __future__ import annotations

import json
from pathlib import Path
from typing import List

from azimuth.app.models import WorkspaceSettings

SETTINGS_FILE = ".azimuth_settings.json"


def settings_path(base_path: str | Path) -> Path:
    return Path(base_path) / SETTINGS_FILE


def load_settings(base_path: str | Path) -> WorkspaceSettings:
    path = settings_path(base_path)
    if not path.exists():
        return WorkspaceSettings()
    payload = json.loads(path.read_text(encoding="utf-8"))
    return WorkspaceSettings.from_dict(payload)


def save_settings(base_path: str | Path, settings: WorkspaceSettings) -> None:
    path = settings_path(base_path)
    path.write_text(json.dumps(settings.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")


def toggle_favorite(base_path: str | Path, note_path: str) -> WorkspaceSettings:
    settings = load_settings(base_path)
    if note_path in settings.favorites:
        settings.favorites = [p for p in settings.favorites if p != note_path]
    else:
        settings.favorites.append(note_path)
    save_settings(base_path, settings)
    return settings


def set_note_tags(base_path: str | Path, note_path: str, tags: List[str]) -> WorkspaceSettings:
    settings = load_settings(base_path)
    if tags:
        settings.tags[note_path] = list(tags)
    else:
        settings.tags.pop(note_path, None)
    save_settings(base_path, settings)
    return settings


def get_note_tags(base_path: str | Path, note_path: str) -> List[str]:
    return list(load_settings(base_path).tags.get(note_path, []))


def get_all_tags(base_path: str | Path) -> List[str]:
    settings = load_settings(base_path)
    return sorted({tag for tags in settings.tags.values() for tag in tags})


def get_notes_by_tag(base_path: str | Path, tag: str) -> List[str]:
    settings = load_settings(base_path)
    return [path for path, tags in settings.tags.items() if tag in tags]
