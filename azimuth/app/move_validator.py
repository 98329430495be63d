from __future__ import annotations

import logging
from typing import Optional

from azimuth.app.autosave import AutosaveScheduler
from azimuth.app.errors import MoveValidationError
from azimuth.app.expansion import ExpansionController
from azimuth.app.models import Note, NotebookNode, TabKey
from azimuth.app.tabs import TabSessionManager
from azimuth.app.tree_store import TreeStore, is_descendant

logger = logging.getLogger(__name__)


def can_move(source: NotebookNode, target: Optional[NotebookNode]) -> bool:
    """Local cycle check for moving ``source`` under ``target`` (None = root).

    Only the loaded part of ``source``'s subtree is visible here, so the
    backend move has to re-check.
    """
    if target is None:
        return True
    if source.path == target.path:
        return False
    return not is_descendant(source, target.path)


class MoveValidator:
    def __init__(
        self,
        store: TreeStore,
        expansion: ExpansionController,
        tabs: TabSessionManager,
        autosave: AutosaveScheduler,
        backend,
    ) -> None:
        self.store = store
        self.expansion = expansion
        self.tabs = tabs
        self.autosave = autosave
        self.backend = backend

    def validate(self, source: NotebookNode, target: Optional[NotebookNode]) -> None:
        if target is not None and source.path == target.path:
            raise MoveValidationError("Cannot move a folder onto itself")
        if not can_move(source, target):
            raise MoveValidationError("Cannot move a folder into itself or its subfolder")

    async def commit_move(self, root: str, source: NotebookNode, target: Optional[NotebookNode]) -> str:
        """Relocate ``source`` and reload the tree from the root.

        A move invalidates path keyed lazy state on both sides, so the tree is
        rebuilt instead of patched and the expanded folders that survive are
        re-expanded. Open tabs below ``source`` follow it. Returns the new path.
        """
        self.validate(source, target)
        target_path = target.path if target is not None else root
        await self.backend.move_notebook(source.path, target_path)
        destination = target_path.rstrip("/\\") + "/" + source.name
        self._relocate_tabs(source.path, destination)
        remembered = set(self.expansion.expanded)
        snapshot = await self.backend.fetch_children(root)
        self.store.reset()
        self.store.load_root(snapshot)
        self.expansion.reset()
        await self.expansion.restore(remembered)
        logger.info("Moved %s -> %s", source.path, destination)
        return destination

    def _relocate_tabs(self, old_folder: str, new_folder: str) -> None:
        moved = self.tabs.relocate(old_folder, new_folder)
        for old_key, _ in moved:
            self.autosave.cancel(old_key)
        active = self.tabs.active_tab
        if active is not None and active.is_dirty and any(new == active.key for _, new in moved):
            self.autosave.arm()

    async def move_note(self, note: Note, target_folder: str) -> None:
        if target_folder == note.folder:
            return
        await self.backend.move_note(note.folder, target_folder, note.id)
        key = TabKey.for_note(note)
        self.autosave.cancel(key)
        self.tabs.close(key, force=True)
        logger.info("Moved note %s from %s to %s", note.id, note.folder, target_folder)
