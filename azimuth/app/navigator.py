from __future__ import annotations

import logging
from dataclasses import dataclass

from azimuth.app.errors import NotFoundError
from azimuth.app.expansion import ExpansionController
from azimuth.app.models import Note, NotebookNode, SearchHit
from azimuth.app.tabs import TabSessionManager
from azimuth.app.tree_store import TreeStore, ancestor_chain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Navigation:
    notebook: NotebookNode
    notes: tuple[Note, ...]
    note: Note


def placeholder_node(folder_path: str) -> NotebookNode:
    """A childless node for a folder that was never loaded into the tree."""
    name = folder_path.rstrip("/\\").replace("\\", "/").rsplit("/", 1)[-1] or folder_path
    return NotebookNode(id=folder_path, name=name, path=folder_path)


def split_favorite(favorite: str) -> SearchHit:
    folder, sep, note_id = favorite.rpartition("/")
    if not sep or not folder or not note_id:
        raise NotFoundError(f"Malformed favorite reference: {favorite!r}")
    return SearchHit(note_id=note_id, title=note_id, folder_path=folder, folder_name=folder.rsplit("/", 1)[-1])


class SearchResultNavigator:
    """Turns a search hit into an expanded tree path and an open tab."""

    def __init__(self, store: TreeStore, expansion: ExpansionController, tabs: TabSessionManager, backend) -> None:
        self.store = store
        self.expansion = expansion
        self.tabs = tabs
        self.backend = backend

    async def reveal(self, root: str, hit: SearchHit) -> Navigation:
        try:
            chain = ancestor_chain(root, hit.folder_path)
        except NotFoundError:
            logger.info("Search hit %s is outside %s; querying it directly", hit.folder_path, root)
            chain = []
        # Each parent must be loaded before the next ancestor can be found.
        for path in chain:
            if self.store.find(path) is None:
                break
            await self.expansion.expand(path)

        notebook = self.store.find(hit.folder_path)
        if notebook is None:
            logger.info("Folder %s is not in the tree; using a placeholder", hit.folder_path)
            notebook = placeholder_node(hit.folder_path)
        notes = tuple(await self.backend.list_notes(hit.folder_path))
        note = next((n for n in notes if n.id == hit.note_id), None)
        if note is None:
            raise NotFoundError(f"{hit.note_id} is no longer in {hit.folder_path}")
        self.tabs.open(note)
        return Navigation(notebook=notebook, notes=notes, note=note)

    async def reveal_favorite(self, root: str, favorite: str) -> Navigation:
        return await self.reveal(root, split_favorite(favorite))
