from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from azimuth.app.errors import TransientIOError
from azimuth.app.models import Note, NotebookNode, SearchHit, WorkspaceSettings
from azimuth.app.tree_store import sentinel

ROOT = "/ws"


def nb(path: str, *children: NotebookNode, lazy: bool = False) -> NotebookNode:
    """Notebook node keyed by ``path``; ``lazy`` gives it a sentinel child."""
    kids = (sentinel(),) if lazy else tuple(children)
    return NotebookNode(id=path, name=path.rsplit("/", 1)[-1], path=path, children=kids)


def note(note_id: str, folder: str, content: str = "", title: Optional[str] = None, **extra) -> Note:
    return Note(id=note_id, title=title or note_id, folder=folder, content=content, **extra)


class FakeBackend:
    """In-memory backend that records every call.

    ``fail`` holds method names that raise :class:`TransientIOError`;
    ``gates`` holds events a method waits on before answering.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.children: dict[str, list[NotebookNode]] = {}
        self.notes: dict[str, list[Note]] = {}
        self.settings = WorkspaceSettings()
        self.search_results: list[SearchHit] = []
        self.fail: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.listeners: list[Callable] = []
        self.watching: list[str] = []
        self.on_change: Optional[Callable[[], None]] = None
        self.last_root: Optional[str] = None

    async def _enter(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise TransientIOError(f"{name} failed")

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def calls_to(self, name: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == name]

    def subscribe_tree(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    def push_tree(self, snapshot, base: Optional[str] = None) -> None:
        """Deliver a root snapshot; ``base`` defaults to the last root requested."""
        base = base or self.last_root
        for listener in list(self.listeners):
            listener(base, list(snapshot))

    async def select_workspace(self, path):
        await self._enter("select_workspace", path)
        return path

    def fetch_root_tree(self, base_path: str) -> None:
        self.calls.append(("fetch_root_tree", base_path))
        self.last_root = base_path

    async def fetch_children(self, path):
        await self._enter("fetch_children", path)
        return list(self.children.get(path, []))

    async def list_notes(self, folder):
        await self._enter("list_notes", folder)
        return list(self.notes.get(folder, []))

    async def save_note(self, folder, note_id, content):
        await self._enter("save_note", folder, note_id, content)
        existing = [n for n in self.notes.get(folder, []) if n.id != note_id]
        self.notes[folder] = existing + [note(note_id, folder, content)]

    async def rename_note(self, folder, old_id, new_id):
        await self._enter("rename_note", folder, old_id, new_id)
        self.notes[folder] = [
            Note(new_id, n.title, n.folder, n.content) if n.id == old_id else n for n in self.notes.get(folder, [])
        ]

    async def delete_note(self, folder, note_id):
        await self._enter("delete_note", folder, note_id)
        self.notes[folder] = [n for n in self.notes.get(folder, []) if n.id != note_id]

    async def create_notebook(self, base_path, name):
        await self._enter("create_notebook", base_path, name)
        created = nb(f"{base_path}/{name}")
        self.children.setdefault(base_path, []).append(created)
        return created

    async def import_folder(self, base_path, folder_path):
        await self._enter("import_folder", base_path, folder_path)
        imported = nb(f"{base_path}/{folder_path.rstrip('/').rsplit('/', 1)[-1]}", lazy=True)
        if all(n.path != imported.path for n in self.children.get(base_path, [])):
            self.children.setdefault(base_path, []).append(imported)
        return imported

    async def move_notebook(self, source_path, target_path):
        await self._enter("move_notebook", source_path, target_path)

    async def move_note(self, source_folder, target_folder, note_id):
        await self._enter("move_note", source_folder, target_folder, note_id)

    async def save_attachment(self, folder, note_id, file_name, data):
        await self._enter("save_attachment", folder, note_id, file_name, data)
        return f"{folder}/{note_id.rsplit('.', 1)[0]}/{file_name}"

    async def search_notes(self, base_path, query):
        await self._enter("search_notes", base_path, query)
        return list(self.search_results)

    async def get_tags(self, base_path, note_path):
        await self._enter("get_tags", base_path, note_path)
        return list(self.settings.tags.get(note_path, []))

    async def set_tags(self, base_path, note_path, tags):
        await self._enter("set_tags", base_path, note_path, list(tags))
        if tags:
            self.settings.tags[note_path] = list(tags)
        else:
            self.settings.tags.pop(note_path, None)

    async def toggle_favorite(self, base_path, note_path):
        await self._enter("toggle_favorite", base_path, note_path)
        if note_path in self.settings.favorites:
            self.settings.favorites.remove(note_path)
        else:
            self.settings.favorites.append(note_path)
        return WorkspaceSettings.from_dict(self.settings.to_dict())

    async def load_settings(self, base_path):
        await self._enter("load_settings", base_path)
        return WorkspaceSettings.from_dict(self.settings.to_dict())

    async def save_settings(self, base_path, settings):
        await self._enter("save_settings", base_path, settings.to_dict())
        self.settings = WorkspaceSettings.from_dict(settings.to_dict())

    def watch(self, path, on_change):
        self.watching.append(path)
        self.on_change = on_change
        return lambda: self.watching.remove(path)


@pytest.fixture
def backend():
    return FakeBackend()
