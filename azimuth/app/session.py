"""The workspace session: one state aggregate, one method per user action.

Components own their slice of state (tree, expansion, tabs, autosave
timers); the session wires them to one backend and one workspace root and
turns their failures into a ``status`` message.
"""
from __future__ import annotations

import asyncio
import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from azimuth.app import config
from azimuth.app.autosave import AutosaveScheduler, utc_now_iso
from azimuth.app.backend import Backend
from azimuth.app.errors import NotFoundError, TransientIOError, WorkspaceError
from azimuth.app.expansion import ExpansionController
from azimuth.app.models import Note, NotebookNode, NotebookStyle, OpenTab, SearchHit, TabKey, WorkspaceSettings
from azimuth.app.move_validator import MoveValidator
from azimuth.app.navigator import Navigation, SearchResultNavigator, placeholder_node
from azimuth.app.tabs import ConfirmationPolicy, TabSessionManager
from azimuth.app.tree_store import TreeStore
from azimuth.server.adapters.files import is_image_file

logger = logging.getLogger(__name__)

NEW_NOTE_CONTENT = "# New Note\n\nStart writing..."
MIN_SEARCH_LENGTH = 2
SORT_KEYS = ("name", "updated", "created")

_SHORTCUTS = (
    (re.compile(r":date\b"), "%Y-%m-%d %H:%M"),
    (re.compile(r":today\b"), "%Y-%m-%d"),
    (re.compile(r":time\b"), "%H:%M"),
)


def expand_shortcuts(content: str, now: Optional[datetime] = None) -> str:
    """Replace ``:date``, ``:today`` and ``:time`` with the current local time."""
    if ":" not in content:
        return content
    now = now or datetime.now()
    for pattern, fmt in _SHORTCUTS:
        content = pattern.sub(now.strftime(fmt), content)
    return content


def is_large_directory(path: str) -> bool:
    """Roots this shallow (``/``, ``/home``, ``/home/user``) are not watched."""
    parts = [p for p in Path(path).parts if p not in (Path(path).anchor, "")]
    return len(parts) <= 2


class WorkspaceSession:
    def __init__(
        self,
        backend: Backend,
        policy: Optional[ConfirmationPolicy] = None,
        autosave_delay: Optional[float] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.backend = backend
        self.root: Optional[str] = None
        self.settings: Optional[WorkspaceSettings] = None
        self.selected_notebook: Optional[NotebookNode] = None
        self.notes: tuple[Note, ...] = ()
        self.selected_note_id: Optional[str] = None
        self.status = ""
        self._on_status = on_status

        self.store = TreeStore()
        self.tabs = TabSessionManager(policy)
        self.expansion = ExpansionController(self.store, backend, report=self._report)
        self.autosave = AutosaveScheduler(
            self.tabs,
            backend,
            lambda: self.settings,
            delay=autosave_delay if autosave_delay is not None else config.load_autosave_delay_ms() / 1000,
            on_saved=self._on_note_saved,
            on_refresh=self.refresh_notes,
            report=self._report,
        )
        self.mover = MoveValidator(self.store, self.expansion, self.tabs, self.autosave, backend)
        self.navigator = SearchResultNavigator(self.store, self.expansion, self.tabs, backend)

        self._unsubscribe_tree = backend.subscribe_tree(self.on_tree_snapshot)
        self._unwatch: Optional[Callable[[], None]] = None
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def tree(self) -> tuple[NotebookNode, ...]:
        return self.store.tree

    @property
    def active_tab(self) -> Optional[OpenTab]:
        return self.tabs.active_tab

    def _report(self, message: str) -> None:
        self.status = message
        if self._on_status:
            self._on_status(message)

    def _require_root(self) -> str:
        if self.root is None:
            raise WorkspaceError("No workspace is open")
        return self.root

    def _require_settings(self) -> WorkspaceSettings:
        if self.settings is None:
            raise WorkspaceError("No workspace is open")
        return self.settings

    # --- workspace -----------------------------------------------------

    def _stop_watching(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
        self._watch_task = None

    def _reset(self) -> None:
        self.autosave.cancel_all()
        self._stop_watching()
        self.tabs.reset()
        self.store.reset()
        self.expansion.reset()
        self.settings = None
        self.selected_notebook = None
        self.notes = ()
        self.selected_note_id = None

    async def open_workspace(self, root: str) -> bool:
        """Switch to ``root``. Open tabs are discarded without confirmation."""
        self._reset()
        self.root = None
        try:
            await self.backend.select_workspace(root)
        except TransientIOError as exc:
            logger.warning("Failed to open workspace %s: %s", root, exc)
            self._report(f"Could not open {root}: {exc}")
            return False
        self.root = root
        self._report(f"Opened {root}")
        try:
            self.settings = await self.backend.load_settings(root)
        except TransientIOError as exc:
            logger.warning("Failed to load settings for %s: %s", root, exc)
            self._report(f"Using default settings: {exc}")
            self.settings = WorkspaceSettings()
        self.backend.fetch_root_tree(root)
        if is_large_directory(root):
            logger.info("Not watching %s: directory too large", root)
        else:
            self._unwatch = self.backend.watch(root, self._on_watch_event)
        return True

    def on_tree_snapshot(self, base_path: str, snapshot) -> None:
        if base_path != self.root:
            logger.debug("Dropping root snapshot for %s while %s is open", base_path, self.root)
            return
        self.store.apply_snapshot(snapshot)

    def _on_watch_event(self) -> None:
        if self._watch_task is not None and not self._watch_task.done():
            return
        self._watch_task = asyncio.get_running_loop().create_task(self.on_watch_signal())

    async def on_watch_signal(self) -> None:
        """Something changed on disk: refresh the tree and the visible notes."""
        if self.root is None:
            return
        self.backend.fetch_root_tree(self.root)
        if self.selected_notebook is None:
            return
        try:
            await self.refresh_notes(self.selected_notebook.path)
        except TransientIOError as exc:
            logger.warning("Failed to refresh notes after a change on disk: %s", exc)
            self._report(f"Failed to refresh notes: {exc}")
            return
        if self.selected_note_id and all(n.id != self.selected_note_id for n in self.notes):
            self.selected_note_id = None

    async def refresh_notes(self, folder: str) -> None:
        if self.selected_notebook is None or self.selected_notebook.path != folder:
            return
        self.notes = tuple(await self.backend.list_notes(folder))

    def _on_note_saved(self, saved: Note) -> None:
        self.notes = tuple(
            Note(n.id, saved.title, n.folder, n.content, n.created_at, saved.updated_at)
            if n.id == saved.id and n.folder == saved.folder
            else n
            for n in self.notes
        )

    # --- notebooks -----------------------------------------------------

    async def expand(self, path: str) -> bool:
        return await self.expansion.expand(path)

    def collapse(self, path: str) -> None:
        self.expansion.collapse(path)

    async def toggle(self, path: str) -> bool:
        return await self.expansion.toggle(path)

    async def select_notebook(self, path: str) -> tuple[Note, ...]:
        self.selected_notebook = self.store.find(path) or placeholder_node(path)
        self.selected_note_id = None
        try:
            self.notes = tuple(await self.backend.list_notes(path))
        except TransientIOError as exc:
            logger.warning("Failed to list notes in %s: %s", path, exc)
            self._report(f"Failed to load notes: {exc}")
            self.notes = ()
        return self.notes

    async def create_notebook(self, name: str) -> Optional[NotebookNode]:
        """Create a folder under the selected notebook, or under the root."""
        root = self._require_root()
        name = name.strip()
        if not name:
            self._report("Notebook name must not be empty")
            return None
        base = self.selected_notebook.path if self.selected_notebook else root
        try:
            created = await self.backend.create_notebook(base, name)
            if base == root:
                self.backend.fetch_root_tree(root)
            else:
                children = await self.backend.fetch_children(base)
                self.store.patch(base, children)
                self.expansion.expanded = self.expansion.expanded | {base}
        except TransientIOError as exc:
            logger.warning("Failed to create notebook %s in %s: %s", name, base, exc)
            self._report(f"Failed to create notebook: {exc}")
            return None
        return created

    async def import_folder(self, folder_path: str) -> Optional[NotebookNode]:
        """Copy a folder from outside the workspace under the root and select it."""
        root = self._require_root()
        try:
            imported = await self.backend.import_folder(root, folder_path)
            snapshot = await self.backend.fetch_children(root)
        except TransientIOError as exc:
            logger.warning("Failed to import %s: %s", folder_path, exc)
            self._report(f"Import failed: {exc}")
            return None
        self.store.apply_snapshot(snapshot)
        self.store.patch(imported.path, imported.children)
        await self.select_notebook(imported.path)
        self._report(f"Imported {imported.name}")
        return imported

    async def move_notebook(self, source_path: str, target_path: Optional[str]) -> bool:
        """Move a folder under ``target_path`` (None moves it to the root).

        Illegal moves raise :class:`MoveValidationError` before the backend is
        called.
        """
        root = self._require_root()
        source = self.store.find(source_path)
        if source is None:
            raise NotFoundError(f"{source_path} is not in the tree")
        target = None
        if target_path is not None and target_path != root:
            target = self.store.find(target_path)
            if target is None:
                raise NotFoundError(f"{target_path} is not in the tree")
        try:
            destination = await self.mover.commit_move(root, source, target)
        except TransientIOError as exc:
            logger.warning("Failed to move %s: %s", source_path, exc)
            self._report(f"Move failed: {exc}")
            return False
        await self._rekey_folder(source_path, destination)
        selected = self.selected_notebook
        if selected is not None and (
            selected.path == source_path or selected.path.startswith(source_path.rstrip("/\\") + "/")
        ):
            self.selected_notebook = None
            self.notes = ()
            self.selected_note_id = None
        return True

    # --- notes ---------------------------------------------------------

    def open_note(self, note: Note) -> OpenTab:
        tab = self.tabs.open(note)
        self.selected_note_id = note.id
        return tab

    def edit(self, content: str) -> str:
        """Apply an edit to the active tab and re-arm its autosave timer."""
        content = expand_shortcuts(content)
        if self.tabs.edit(content):
            self.autosave.arm()
        return content

    def switch_to(self, key: TabKey) -> OpenTab:
        tab = self.tabs.switch_to(key)
        self.selected_note_id = key.note_id
        return tab

    def close_tab(self, key: TabKey, force: bool = False) -> None:
        self.tabs.close(key, force=force)
        self.autosave.cancel(key)
        active = self.tabs.active_key
        self.selected_note_id = active.note_id if active else None

    async def save(self) -> bool:
        return await self.autosave.save_now()

    async def create_note(self) -> Optional[Note]:
        if self.selected_notebook is None:
            self._report("Select a notebook first")
            return None
        folder = self.selected_notebook.path
        note_id = f"{uuid.uuid4()}.md"
        try:
            await self.backend.save_note(folder, note_id, NEW_NOTE_CONTENT)
        except TransientIOError as exc:
            logger.warning("Failed to create note in %s: %s", folder, exc)
            self._report(f"Failed to create note: {exc}")
            return None
        now = utc_now_iso()
        note = Note(note_id, "New Note", folder, NEW_NOTE_CONTENT, now, now)
        try:
            await self.refresh_notes(folder)
        except TransientIOError as exc:
            logger.warning("Failed to refresh notes in %s: %s", folder, exc)
            self.notes = self.notes + (note,)
        note = next((n for n in self.notes if n.id == note_id), note)
        self.open_note(note)
        return note

    async def delete_note(self, note: Note) -> bool:
        if not self.tabs.policy.confirm_delete(note):
            return False
        try:
            await self.backend.delete_note(note.folder, note.id)
        except TransientIOError as exc:
            logger.warning("Failed to delete %s: %s", note.note_path, exc)
            self._report(f"Failed to delete note: {exc}")
            return False
        key = TabKey.for_note(note)
        self.autosave.cancel(key)
        self.tabs.close(key, force=True)
        self.notes = tuple(n for n in self.notes if not (n.id == note.id and n.folder == note.folder))
        if self.selected_note_id == note.id:
            self.selected_note_id = None
        return True

    async def rename_note(self, note: Note, new_id: str) -> bool:
        new_id = new_id.strip()
        if not new_id or new_id == note.id:
            return False
        try:
            await self.backend.rename_note(note.folder, note.id, new_id)
        except TransientIOError as exc:
            logger.warning("Failed to rename %s: %s", note.note_path, exc)
            self._report(f"Rename failed: {exc}")
            return False
        key = TabKey.for_note(note)
        self.autosave.cancel(key)
        self.tabs.rename(key, new_id)
        if self.selected_note_id == note.id:
            self.selected_note_id = new_id
        try:
            await self.refresh_notes(note.folder)
        except TransientIOError as exc:
            logger.warning("Failed to refresh notes in %s: %s", note.folder, exc)
        await self._rekey_note(note.note_path, f"{note.folder}/{new_id}")
        return True

    async def move_note(self, note: Note, target_folder: str) -> bool:
        if target_folder == note.folder:
            return False
        try:
            await self.mover.move_note(note, target_folder)
        except TransientIOError as exc:
            logger.warning("Failed to move %s: %s", note.note_path, exc)
            self._report(f"Move failed: {exc}")
            return False
        self.notes = tuple(n for n in self.notes if not (n.id == note.id and n.folder == note.folder))
        if self.selected_note_id == note.id:
            self.selected_note_id = None
        await self._rekey_note(note.note_path, f"{target_folder}/{note.id}")
        return True

    def sorted_notes(self, sort_by: str = "name", order: str = "asc") -> list[Note]:
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_by}")
        if sort_by == "name":
            key = lambda n: (n.title or n.id).lower()
        elif sort_by == "updated":
            key = lambda n: n.updated_at
        else:
            key = lambda n: n.created_at
        return sorted(self.notes, key=key, reverse=order == "desc")

    # --- attachments ---------------------------------------------------

    async def attach(self, file_name: str, data: bytes) -> Optional[str]:
        """Store a file next to the active note and link it at the end of the note."""
        tab = self.tabs.active_tab
        if tab is None:
            self._report("Open a note before attaching files")
            return None
        try:
            saved = await self.backend.save_attachment(tab.note.folder, tab.note.id, file_name, data)
        except TransientIOError as exc:
            logger.warning("Failed to attach %s: %s", file_name, exc)
            self._report(f"Attachment failed: {exc}")
            return None
        saved_path = Path(saved)
        target = f"{saved_path.parent.name}/{saved_path.name}"
        link = f"![{saved_path.name}]({target})" if is_image_file(saved_path.name) else f"[{saved_path.name}]({target})"
        content = self.tabs.content
        if content and not content.endswith("\n"):
            content += "\n"
        self.edit(content + link + "\n")
        return link

    # --- search --------------------------------------------------------

    async def search(self, query: str) -> list[SearchHit]:
        if len(query.strip()) < MIN_SEARCH_LENGTH:
            return []
        root = self._require_root()
        try:
            return await self.backend.search_notes(root, query.strip())
        except TransientIOError as exc:
            logger.warning("Search for %r failed: %s", query, exc)
            self._report(f"Search failed: {exc}")
            return []

    def _apply_navigation(self, navigation: Navigation) -> Navigation:
        self.selected_notebook = navigation.notebook
        self.notes = navigation.notes
        self.selected_note_id = navigation.note.id
        return navigation

    async def open_search_hit(self, hit: SearchHit) -> Optional[Navigation]:
        root = self._require_root()
        try:
            navigation = await self.navigator.reveal(root, hit)
        except (NotFoundError, TransientIOError) as exc:
            logger.error("Could not open %s/%s: %s", hit.folder_path, hit.note_id, exc)
            self._report(f"Could not open note: {exc}")
            return None
        return self._apply_navigation(navigation)

    async def open_favorite(self, favorite: str) -> Optional[Navigation]:
        root = self._require_root()
        try:
            navigation = await self.navigator.reveal_favorite(root, favorite)
        except (NotFoundError, TransientIOError) as exc:
            logger.error("Could not open favorite %s: %s", favorite, exc)
            self._report(f"Could not open favorite: {exc}")
            return None
        return self._apply_navigation(navigation)

    # --- settings ------------------------------------------------------

    async def _persist_settings(self) -> bool:
        root = self._require_root()
        try:
            await self.backend.save_settings(root, self._require_settings())
        except TransientIOError as exc:
            logger.warning("Failed to save settings: %s", exc)
            self._report(f"Failed to save settings: {exc}")
            return False
        return True

    async def update_settings(self, **changes) -> WorkspaceSettings:
        settings = self._require_settings()
        for name, value in changes.items():
            if not hasattr(settings, name):
                raise AttributeError(f"Unknown setting: {name}")
            setattr(settings, name, value)
        await self._persist_settings()
        return settings

    async def toggle_favorite(self, note: Note) -> bool:
        root = self._require_root()
        try:
            self.settings = await self.backend.toggle_favorite(root, note.note_path)
        except TransientIOError as exc:
            logger.warning("Failed to toggle favorite %s: %s", note.note_path, exc)
            self._report(f"Failed to update favorites: {exc}")
        return self.is_favorite(note)

    def is_favorite(self, note: Note) -> bool:
        return self.settings is not None and note.note_path in self.settings.favorites

    def note_tags(self, note: Note) -> list[str]:
        if self.settings is None:
            return []
        return list(self.settings.tags.get(note.note_path, []))

    async def _set_tags(self, note: Note, tags: list[str]) -> list[str]:
        root = self._require_root()
        settings = self._require_settings()
        try:
            await self.backend.set_tags(root, note.note_path, tags)
        except TransientIOError as exc:
            logger.warning("Failed to update tags of %s: %s", note.note_path, exc)
            self._report(f"Failed to update tags: {exc}")
            return self.note_tags(note)
        if tags:
            settings.tags[note.note_path] = list(tags)
        else:
            settings.tags.pop(note.note_path, None)
        return list(tags)

    async def add_tag(self, note: Note, tag: str) -> list[str]:
        tag = tag.strip().lstrip("#")
        tags = self.note_tags(note)
        if not tag or tag in tags:
            return tags
        return await self._set_tags(note, tags + [tag])

    async def remove_tag(self, note: Note, tag: str) -> list[str]:
        tags = self.note_tags(note)
        if tag not in tags:
            return tags
        return await self._set_tags(note, [t for t in tags if t != tag])

    def all_tags(self) -> list[str]:
        if self.settings is None:
            return []
        return sorted({tag for tags in self.settings.tags.values() for tag in tags})

    def notebook_style(self, path: str) -> NotebookStyle:
        if self.settings is None:
            return NotebookStyle()
        return self.settings.notebook_styles.get(path, NotebookStyle())

    async def update_notebook_style(
        self, path: str, icon: Optional[str] = None, color: Optional[str] = None
    ) -> NotebookStyle:
        settings = self._require_settings()
        current = self.notebook_style(path)
        style = NotebookStyle(icon=icon or current.icon, color=color or current.color)
        settings.notebook_styles[path] = style
        await self._persist_settings()
        return style

    async def toggle_pinned(self, path: str) -> bool:
        settings = self._require_settings()
        if path in settings.pinned_folders:
            settings.pinned_folders = [p for p in settings.pinned_folders if p != path]
        else:
            settings.pinned_folders.append(path)
        await self._persist_settings()
        return path in settings.pinned_folders

    async def set_auto_save(self, enabled: bool) -> None:
        self._require_settings().auto_save = enabled
        if not enabled:
            self.autosave.cancel_all()
        await self._persist_settings()

    async def _rekey_note(self, old_path: str, new_path: str) -> None:
        """Carry favorites and tags over to a renamed or moved note."""
        settings = self.settings
        if settings is None:
            return
        changed = False
        if old_path in settings.favorites:
            settings.favorites = [new_path if p == old_path else p for p in settings.favorites]
            changed = True
        if old_path in settings.tags:
            settings.tags[new_path] = settings.tags.pop(old_path)
            changed = True
        if changed:
            await self._persist_settings()

    async def _rekey_folder(self, old_folder: str, new_folder: str) -> None:
        """Carry favorites, tags, pins and styles below a moved folder over."""
        settings = self.settings
        if settings is None:
            return
        prefix = old_folder.rstrip("/\\") + "/"

        def moved(path: str) -> str:
            if path == old_folder or path.startswith(prefix):
                return new_folder + path[len(old_folder):]
            return path

        favorites = [moved(p) for p in settings.favorites]
        tags = {moved(p): t for p, t in settings.tags.items()}
        pinned = [moved(p) for p in settings.pinned_folders]
        styles = {moved(p): s for p, s in settings.notebook_styles.items()}
        if (favorites, tags, pinned, styles) == (
            settings.favorites,
            settings.tags,
            settings.pinned_folders,
            settings.notebook_styles,
        ):
            return
        settings.favorites = favorites
        settings.tags = tags
        settings.pinned_folders = pinned
        settings.notebook_styles = styles
        await self._persist_settings()

    async def close(self) -> None:
        self.autosave.cancel_all()
        self._stop_watching()
        self._unsubscribe_tree()
