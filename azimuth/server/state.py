from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Optional


@dataclass
class WorkspaceState:
    root: Optional[Path] = None
    version: int = 0


class StateManager:
    def __init__(self) -> None:
        self._state = WorkspaceState()
        self._lock = RLock()

    def set_root(self, path: str) -> Path:
        root_path = Path(path).expanduser().resolve()
        if not root_path.exists() or not root_path.is_dir():
            raise ValueError(f"Workspace directory does not exist: {root_path}")
        with self._lock:
            self._state.root = root_path
            self._state.version += 1
        return root_path

    def get_root(self) -> Path:
        with self._lock:
            if self._state.root is None:
                raise RuntimeError("Workspace root is not set. Call /api/workspace/select first.")
            return self._state.root

    def clear(self) -> None:
        with self._lock:
            self._state.root = None

    @property
    def version(self) -> int:
        with self._lock:
            return self._state.version

    def bump_version(self) -> int:
        with self._lock:
            self._state.version += 1
            return self._state.version


workspace_state = StateManager()
