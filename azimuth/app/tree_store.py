"""Notebook tree state.

The tree is an immutable tuple of :class:`NotebookNode`. Every operation
returns a new tuple (sharing untouched branches) so callers can detect a
change with an identity check.
"""
from __future__ import annotations

import logging
import os
from dataclasses import replace
from typing import Iterable, Optional, Sequence

from azimuth.app.errors import NotFoundError
from azimuth.app.models import NotebookNode

logger = logging.getLogger(__name__)

Tree = tuple[NotebookNode, ...]

_SENTINEL = NotebookNode(id="", name="", path="")


def _debug_enabled() -> bool:
    return os.getenv("AZIMUTH_DEBUG_TREE", "0") not in ("0", "false", "False", "")


def sentinel() -> NotebookNode:
    return _SENTINEL


def has_real_children(node: NotebookNode) -> bool:
    return bool(node.children) and node.children[0].id != ""


def is_expandable(node: NotebookNode) -> bool:
    return bool(node.children)


def merge(snapshot: Sequence[NotebookNode], current: Sequence[NotebookNode]) -> Tree:
    """Reconcile a shallow root snapshot with the current tree.

    Snapshot order and membership win: folders missing from the snapshot
    are dropped and new ones are inserted as-is. A current node with loaded
    children keeps them and only adopts the snapshot's scalar fields.
    """
    by_path = {node.path: node for node in current}
    merged: list[NotebookNode] = []
    for incoming in snapshot:
        existing = by_path.get(incoming.path)
        if existing is not None and has_real_children(existing):
            if existing.id == incoming.id and existing.name == incoming.name:
                merged.append(existing)
            else:
                merged.append(replace(existing, id=incoming.id, name=incoming.name))
        else:
            merged.append(incoming)
    if _debug_enabled():
        logger.debug(
            "merge: snapshot=%d current=%d kept_loaded=%d",
            len(snapshot),
            len(current),
            sum(1 for n in merged if has_real_children(n)),
        )
    return tuple(merged)


def patch_children(tree: Tree, path: str, children: Iterable[NotebookNode]) -> Tree:
    """Return ``tree`` with the children of the node at ``path`` replaced.

    Returns ``tree`` itself when no node has that path.
    """
    new_children = tuple(children)

    def walk(nodes: Tree) -> Tree:
        changed = False
        out: list[NotebookNode] = []
        for node in nodes:
            if node.path == path:
                out.append(replace(node, children=new_children))
                changed = True
            elif has_real_children(node):
                patched = walk(node.children)
                if patched is not node.children:
                    out.append(replace(node, children=patched))
                    changed = True
                else:
                    out.append(node)
            else:
                out.append(node)
        return tuple(out) if changed else nodes

    return walk(tree)


def find_by_path(tree: Sequence[NotebookNode], path: str) -> Optional[NotebookNode]:
    if not path:
        return None
    for node in tree:
        if node.path == path:
            return node
        found = find_by_path(node.children, path)
        if found is not None:
            return found
    return None


def is_descendant(ancestor: NotebookNode, path: str) -> bool:
    """True when ``path`` is ``ancestor`` itself or inside its loaded subtree."""
    if not path:
        return False
    if ancestor.path == path:
        return True
    return any(is_descendant(child, path) for child in ancestor.children)


def ancestor_chain(root: str, folder_path: str) -> list[str]:
    """Folder paths from just below ``root`` down to ``folder_path`` inclusive."""
    base = root.rstrip("/\\")
    if folder_path.rstrip("/\\") == base:
        return []
    if not folder_path.startswith(base) or len(folder_path) <= len(base):
        raise NotFoundError(f"{folder_path} is outside the workspace root {root}")
    sep = folder_path[len(base)]
    if sep not in "/\\":
        raise NotFoundError(f"{folder_path} is outside the workspace root {root}")
    chain: list[str] = []
    current = base
    for part in folder_path[len(base) + 1 :].split(sep):
        if not part:
            continue
        current = f"{current}{sep}{part}"
        chain.append(current)
    return chain


class TreeStore:
    """Holds the current notebook tree for one workspace."""

    def __init__(self) -> None:
        self.tree: Tree = ()
        self.generation = 0

    @property
    def is_empty(self) -> bool:
        return not self.tree

    def load_root(self, snapshot: Sequence[NotebookNode]) -> Tree:
        self.tree = tuple(snapshot)
        return self.tree

    def apply_snapshot(self, snapshot: Sequence[NotebookNode]) -> Tree:
        if self.is_empty:
            return self.load_root(snapshot)
        self.tree = merge(snapshot, self.tree)
        return self.tree

    def patch(self, path: str, children: Iterable[NotebookNode]) -> Tree:
        self.tree = patch_children(self.tree, path, children)
        return self.tree

    def find(self, path: str) -> Optional[NotebookNode]:
        return find_by_path(self.tree, path)

    def reset(self) -> None:
        self.tree = ()
        self.generation += 1
