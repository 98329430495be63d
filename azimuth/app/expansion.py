from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

from azimuth.app.errors import TransientIOError
from azimuth.app.tree_store import TreeStore, has_real_children, is_expandable

logger = logging.getLogger(__name__)


class ExpansionController:
    """Tracks expanded and loading folders and lazily fetches children."""

    def __init__(self, store: TreeStore, backend, report: Optional[Callable[[str], None]] = None) -> None:
        self.store = store
        self.backend = backend
        self._report = report
        self.expanded: frozenset[str] = frozenset()
        self.loading: frozenset[str] = frozenset()
        self._fetches: dict[str, asyncio.Task] = {}

    def is_expanded(self, path: str) -> bool:
        return path in self.expanded

    def is_loading(self, path: str) -> bool:
        return path in self.loading

    async def expand(self, path: str) -> bool:
        """Expand ``path``, fetching its children when only a sentinel is known.

        A second expand of a folder that is still loading waits for the fetch
        already running instead of issuing another one. Returns False when the
        fetch failed; the folder is then left collapsed with its children
        untouched so expanding again retries.
        """
        node = self.store.find(path)
        if node is None:
            logger.debug("expand: %s is not in the tree", path)
            return False
        self.expanded = self.expanded | {path}
        if has_real_children(node) or not is_expandable(node):
            return True
        fetch = self._fetches.get(path)
        if fetch is None:
            fetch = asyncio.get_running_loop().create_task(self._fetch(path))
            self._fetches[path] = fetch
            self.loading = self.loading | {path}
            fetch.add_done_callback(lambda t, path=path: self._finished(path, t))
        return await asyncio.shield(fetch)

    def _finished(self, path: str, fetch: asyncio.Task) -> None:
        if self._fetches.get(path) is fetch:
            del self._fetches[path]
            self.loading = self.loading - {path}

    async def _fetch(self, path: str) -> bool:
        generation = self.store.generation
        try:
            children = await self.backend.fetch_children(path)
        except TransientIOError as exc:
            logger.warning("Failed to load children of %s: %s", path, exc)
            self.expanded = self.expanded - {path}
            if self._report:
                self._report(f"Failed to load {path}: {exc}")
            return False
        if generation != self.store.generation:
            logger.debug("expand: dropping children of %s from a previous tree", path)
            return False
        self.store.patch(path, children)
        return True

    def collapse(self, path: str) -> None:
        self.expanded = self.expanded - {path}

    async def toggle(self, path: str) -> bool:
        if path in self.expanded:
            self.collapse(path)
            return True
        return await self.expand(path)

    async def restore(self, paths: Iterable[str]) -> None:
        """Re-expand remembered folders that still exist, parents first."""
        for path in sorted(set(paths), key=lambda p: (p.count("/") + p.count("\\"), p)):
            if self.store.find(path) is not None:
                await self.expand(path)

    def reset(self) -> None:
        self.expanded = frozenset()
        self.loading = frozenset()
        self._fetches.clear()
