from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Protocol

from azimuth.app.errors import ConfirmationDeclined, NotFoundError
from azimuth.app.models import Note, OpenTab, TabKey

logger = logging.getLogger(__name__)


class ConfirmationPolicy(Protocol):
    def confirm_discard(self, tab: OpenTab) -> bool: ...

    def confirm_delete(self, note: Note) -> bool: ...


class AlwaysConfirm:
    def confirm_discard(self, tab: OpenTab) -> bool:
        return True

    def confirm_delete(self, note: Note) -> bool:
        return True


class NeverConfirm:
    def confirm_discard(self, tab: OpenTab) -> bool:
        return False

    def confirm_delete(self, note: Note) -> bool:
        return False


class TabSessionManager:
    """Open tabs, the active tab and the live content of the editing surface.

    ``content`` is what the editor shows; it is written back into the active
    tab on every edit and before every switch so a backgrounded tab always
    carries its latest live content.
    """

    def __init__(self, policy: Optional[ConfirmationPolicy] = None) -> None:
        self.policy: ConfirmationPolicy = policy or AlwaysConfirm()
        self.tabs: tuple[OpenTab, ...] = ()
        self.active_key: Optional[TabKey] = None
        self.content: str = ""

    @property
    def active_tab(self) -> Optional[OpenTab]:
        if self.active_key is None:
            return None
        return self.get(self.active_key)

    def get(self, key: TabKey) -> Optional[OpenTab]:
        for tab in self.tabs:
            if tab.key == key:
                return tab
        return None

    def keys_under(self, folder: str) -> list[TabKey]:
        """Keys of tabs whose note lives in ``folder`` or any folder below it."""
        prefix = folder.rstrip("/\\") + "/"
        return [tab.key for tab in self.tabs if tab.note.folder == folder or tab.note.folder.startswith(prefix)]

    def _replace(self, key: TabKey, tab: OpenTab) -> None:
        self.tabs = tuple(tab if t.key == key else t for t in self.tabs)

    def _stash_active(self) -> None:
        current = self.active_tab
        if current is not None and current.content != self.content:
            self._replace(current.key, current.with_content(self.content))

    def _activate(self, tab: Optional[OpenTab]) -> None:
        if tab is None:
            self.active_key = None
            self.content = ""
        else:
            self.active_key = tab.key
            self.content = tab.content

    def open(self, note: Note) -> OpenTab:
        key = TabKey.for_note(note)
        self._stash_active()
        existing = self.get(key)
        if existing is not None:
            self._activate(existing)
            return existing
        tab = OpenTab(note=note, content=note.content, is_dirty=False)
        self.tabs = self.tabs + (tab,)
        self._activate(tab)
        return tab

    def edit(self, content: str) -> bool:
        current = self.active_tab
        if current is None:
            return False
        self.content = content
        self._replace(current.key, current.with_content(content))
        return True

    def switch_to(self, key: TabKey) -> OpenTab:
        if self.get(key) is None:
            raise NotFoundError(f"No open tab for {key.folder}/{key.note_id}")
        self._stash_active()
        target = self.get(key)
        self._activate(target)
        return target

    def close(self, key: TabKey, force: bool = False) -> None:
        if key == self.active_key:
            self._stash_active()
        tab = self.get(key)
        if tab is None:
            return
        if tab.is_dirty and not force and not self.policy.confirm_discard(tab):
            raise ConfirmationDeclined(f"Kept unsaved changes in {tab.note.id}")
        self.tabs = tuple(t for t in self.tabs if t.key != key)
        if key == self.active_key:
            self._activate(self.tabs[-1] if self.tabs else None)

    def on_save_success(
        self, key: TabKey, saved_content: str, saved_at: str, title: Optional[str] = None
    ) -> Optional[OpenTab]:
        tab = self.get(key)
        if tab is None:
            logger.debug("Save finished for closed tab %s", key)
            return None
        note = replace(
            tab.note,
            content=saved_content,
            updated_at=saved_at,
            title=title if title is not None else tab.note.title,
        )
        updated = OpenTab(note=note, content=tab.content, is_dirty=tab.content != saved_content)
        self._replace(key, updated)
        return updated

    def rename(self, key: TabKey, new_id: str) -> Optional[OpenTab]:
        tab = self.get(key)
        if tab is None:
            return None
        renamed = replace(tab, note=replace(tab.note, id=new_id))
        self._replace(key, renamed)
        if self.active_key == key:
            self.active_key = renamed.key
        return renamed

    def relocate(self, old_folder: str, new_folder: str) -> list[tuple[TabKey, TabKey]]:
        """Repoint the tabs under ``old_folder`` after it was moved to ``new_folder``."""
        moved = []
        for key in self.keys_under(old_folder):
            tab = self.get(key)
            folder = new_folder + tab.note.folder[len(old_folder):]
            relocated = replace(tab, note=replace(tab.note, folder=folder))
            self._replace(key, relocated)
            if self.active_key == key:
                self.active_key = relocated.key
            moved.append((key, relocated.key))
        return moved

    def reset(self) -> None:
        self.tabs = ()
        self._activate(None)
