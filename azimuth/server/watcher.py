"""Directory watching.

Watch callbacks carry no payload: they only say "something under this path
changed". The callback runs on the watchdog observer thread.
"""
from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from azimuth.server.adapters.settings import SETTINGS_FILE

logger = logging.getLogger(__name__)


class _SignalHandler(FileSystemEventHandler):
    def __init__(self, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._on_change = on_change

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        # Content changes arrive as file events; a folder only reports its mtime.
        if event.is_directory and event.event_type == "modified":
            return
        if Path(os.fsdecode(event.src_path)).name == SETTINGS_FILE:
            return
        try:
            self._on_change()
        except Exception:
            logger.exception("Watch callback failed for %s", event.src_path)


class DirectoryWatcher:
    """Owns one watchdog observer and any number of watched paths."""

    def __init__(self) -> None:
        self._observer = None
        self._lock = threading.Lock()

    def _ensure_started(self):
        if self._observer is None:
            self._observer = Observer()
            self._observer.daemon = True
            self._observer.start()
        return self._observer

    def watch(self, path: str | os.PathLike, on_change: Callable[[], None], recursive: bool = False) -> Callable[[], None]:
        with self._lock:
            observer = self._ensure_started()
            watch = observer.schedule(_SignalHandler(on_change), str(path), recursive=recursive)
        logger.info("Watching %s", path)

        def unsubscribe() -> None:
            with self._lock:
                if self._observer is None:
                    return
                try:
                    self._observer.unschedule(watch)
                except KeyError:
                    pass

        return unsubscribe

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)


directory_watcher = DirectoryWatcher()
