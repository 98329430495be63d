"""Debounced autosave with a staleness guard.

Every edit re-arms a single timer per tab. The timer carries the context it
was armed in; when it fires, the live state is read again and the save is
abandoned if the user moved to another document, turned autosave off or
nothing changed since the last save.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from azimuth.app.errors import TransientIOError
from azimuth.app.models import Note, TabKey, WorkspaceSettings
from azimuth.app.tabs import TabSessionManager

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 1.0

_HEADING_RE = re.compile(r"^#+\s*")


def _debug_enabled() -> bool:
    return os.getenv("AZIMUTH_DEBUG_AUTOSAVE", "0") not in ("0", "false", "False", "")


def derive_title(content: str) -> str:
    first_line = content.split("\n", 1)[0] if content else ""
    title = _HEADING_RE.sub("", first_line).strip()
    return title or "Untitled"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ArmContext:
    note_id: str
    folder: str

    @property
    def key(self) -> TabKey:
        return TabKey(self.note_id, self.folder)


@dataclass
class ScheduledSave:
    context: ArmContext
    handle: asyncio.TimerHandle

    def cancel(self) -> None:
        self.handle.cancel()


class AutosaveScheduler:
    def __init__(
        self,
        tabs: TabSessionManager,
        backend,
        settings: Callable[[], Optional[WorkspaceSettings]],
        delay: float = DEFAULT_DELAY_SECONDS,
        on_saved: Optional[Callable[[Note], None]] = None,
        on_refresh: Optional[Callable[[str], Awaitable[None]]] = None,
        report: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.tabs = tabs
        self.backend = backend
        self._settings = settings
        self.delay = delay
        self._on_saved = on_saved
        self._on_refresh = on_refresh
        self._report = report
        self._scheduled: dict[TabKey, ScheduledSave] = {}
        self._inflight: dict[TabKey, asyncio.Task] = {}

    def pending(self, key: TabKey) -> bool:
        return key in self._scheduled

    def arm(self) -> Optional[ScheduledSave]:
        key = self.tabs.active_key
        if key is None:
            return None
        self.cancel(key)
        context = ArmContext(key.note_id, key.folder)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.delay, self._fire, context)
        scheduled = ScheduledSave(context, handle)
        self._scheduled[key] = scheduled
        return scheduled

    def cancel(self, key: TabKey) -> None:
        scheduled = self._scheduled.pop(key, None)
        if scheduled is not None:
            scheduled.cancel()

    def cancel_all(self) -> None:
        for scheduled in self._scheduled.values():
            scheduled.cancel()
        self._scheduled.clear()

    def _fire(self, context: ArmContext) -> None:
        self._scheduled.pop(context.key, None)
        task = asyncio.get_running_loop().create_task(self._run(context))
        self._inflight[context.key] = task
        task.add_done_callback(lambda t, key=context.key: self._forget(key, t))

    def _forget(self, key: TabKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _run(self, context: ArmContext) -> bool:
        settings = self._settings()
        if settings is not None and not settings.auto_save:
            return False
        if self.tabs.active_key != context.key:
            if _debug_enabled():
                logger.debug("Autosave skipped: %s is no longer active", context.key)
            return False
        tab = self.tabs.active_tab
        content = self.tabs.content
        if tab is None or content == tab.note.content:
            return False
        return await self._save(context.key, content)

    async def _save(self, key: TabKey, content: str) -> bool:
        try:
            await self.backend.save_note(key.folder, key.note_id, content)
        except TransientIOError as exc:
            logger.warning("Failed to save %s/%s: %s", key.folder, key.note_id, exc)
            if self._report:
                self._report(f"Failed to save {key.note_id}: {exc}")
            return False
        updated = self.tabs.on_save_success(key, content, utc_now_iso(), title=derive_title(content))
        if _debug_enabled():
            logger.debug("Saved %s (%d chars)", key, len(content))
        if updated is not None and self._on_saved:
            self._on_saved(updated.note)
        return True

    async def save_now(self) -> bool:
        """Save the active tab immediately, superseding any pending autosave."""
        key = self.tabs.active_key
        if key is None:
            return False
        self.cancel(key)
        inflight = self._inflight.get(key)
        if inflight is not None:
            await inflight
            tab = self.tabs.get(key)
            if tab is not None and not tab.is_dirty and self.tabs.active_key == key:
                await self._refresh(key)
                return True
        if self.tabs.active_key != key:
            return False
        saved = await self._save(key, self.tabs.content)
        if saved:
            await self._refresh(key)
        return saved

    async def _refresh(self, key: TabKey) -> None:
        if self._on_refresh is None:
            return
        try:
            await self._on_refresh(key.folder)
        except TransientIOError as exc:
            logger.warning("Failed to refresh notes in %s: %s", key.folder, exc)
