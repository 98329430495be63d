"""Backend collaborators used by the workspace engine.

Two implementations share one surface: :class:`HttpBackend` talks to the
local FastAPI service with httpx, :class:`LocalBackend` calls the filesystem
adapters in-process. Root tree listings are not returned to the caller; they
are pushed, tagged with the base path they were listed for, to whoever
subscribed with :meth:`subscribe_tree`.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import httpx

from azimuth.app.errors import TransientIOError
from azimuth.app.models import Note, NotebookNode, SearchHit, WorkspaceSettings
from azimuth.server.adapters import files
from azimuth.server.adapters import settings as settings_store
from azimuth.server.adapters.files import FileAccessError

logger = logging.getLogger(__name__)

TreeListener = Callable[[str, list[NotebookNode]], None]


class Backend(Protocol):
    async def select_workspace(self, path: str) -> str: ...

    def subscribe_tree(self, listener: TreeListener) -> Callable[[], None]: ...

    def fetch_root_tree(self, base_path: str) -> None: ...

    async def fetch_children(self, path: str) -> list[NotebookNode]: ...

    async def list_notes(self, folder: str) -> list[Note]: ...

    async def save_note(self, folder: str, note_id: str, content: str) -> None: ...

    async def rename_note(self, folder: str, old_id: str, new_id: str) -> None: ...

    async def delete_note(self, folder: str, note_id: str) -> None: ...

    async def create_notebook(self, base_path: str, name: str) -> NotebookNode: ...

    async def import_folder(self, base_path: str, folder_path: str) -> NotebookNode: ...

    async def move_notebook(self, source_path: str, target_path: str) -> None: ...

    async def move_note(self, source_folder: str, target_folder: str, note_id: str) -> None: ...

    async def save_attachment(self, folder: str, note_id: str, file_name: str, data: bytes) -> str: ...

    async def search_notes(self, base_path: str, query: str) -> list[SearchHit]: ...

    async def get_tags(self, base_path: str, note_path: str) -> list[str]: ...

    async def set_tags(self, base_path: str, note_path: str, tags: list[str]) -> None: ...

    async def toggle_favorite(self, base_path: str, note_path: str) -> WorkspaceSettings: ...

    async def load_settings(self, base_path: str) -> WorkspaceSettings: ...

    async def save_settings(self, base_path: str, settings: WorkspaceSettings) -> None: ...

    def watch(self, path: str, on_change: Callable[[], None]) -> Callable[[], None]: ...


class _TreePush:
    """Listener registry and background root fetches shared by both backends."""

    def __init__(self) -> None:
        self._tree_listeners: list[TreeListener] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe_tree(self, listener: TreeListener) -> Callable[[], None]:
        self._tree_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._tree_listeners:
                self._tree_listeners.remove(listener)

        return unsubscribe

    def fetch_root_tree(self, base_path: str) -> None:
        task = asyncio.get_running_loop().create_task(self._push_root(base_path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _push_root(self, base_path: str) -> None:
        try:
            snapshot = await self.fetch_children(base_path)
        except TransientIOError as exc:
            logger.warning("Failed to list notebooks in %s: %s", base_path, exc)
            return
        for listener in list(self._tree_listeners):
            listener(base_path, snapshot)

    async def fetch_children(self, path: str) -> list[NotebookNode]:
        raise NotImplementedError

    async def drain(self) -> None:
        """Wait for pending root fetches (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class HttpBackend(_TreePush):
    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 2.0,
        timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.http = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.poll_interval = poll_interval

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict:
        try:
            resp = await self.http.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            try:
                detail = exc.response.json().get("detail", detail)
            except ValueError:
                pass
            raise TransientIOError(f"{method} {url} failed ({exc.response.status_code}): {detail}") from exc
        except httpx.HTTPError as exc:
            raise TransientIOError(f"{method} {url} failed: {exc}") from exc
        return resp.json()

    async def select_workspace(self, path: str) -> str:
        payload = await self._request("POST", "/api/workspace/select", json={"path": path})
        return payload["root"]

    async def fetch_children(self, path: str) -> list[NotebookNode]:
        payload = await self._request("GET", "/api/notebooks", params={"path": path})
        return [NotebookNode.from_dict(n) for n in payload.get("notebooks") or []]

    async def list_notes(self, folder: str) -> list[Note]:
        payload = await self._request("GET", "/api/notes", params={"folder": folder})
        return [Note.from_dict(n) for n in payload.get("notes") or []]

    async def save_note(self, folder: str, note_id: str, content: str) -> None:
        await self._request("POST", "/api/notes/save", json={"folder": folder, "note_id": note_id, "content": content})

    async def rename_note(self, folder: str, old_id: str, new_id: str) -> None:
        await self._request("POST", "/api/notes/rename", json={"folder": folder, "old_id": old_id, "new_id": new_id})

    async def delete_note(self, folder: str, note_id: str) -> None:
        await self._request("POST", "/api/notes/delete", json={"folder": folder, "note_id": note_id})

    async def create_notebook(self, base_path: str, name: str) -> NotebookNode:
        payload = await self._request("POST", "/api/notebooks/create", json={"base_path": base_path, "name": name})
        return NotebookNode.from_dict(payload["notebook"])

    async def import_folder(self, base_path: str, folder_path: str) -> NotebookNode:
        payload = await self._request(
            "POST", "/api/notebooks/import", json={"base_path": base_path, "folder_path": folder_path}
        )
        return NotebookNode.from_dict(payload["notebook"])

    async def move_notebook(self, source_path: str, target_path: str) -> None:
        await self._request(
            "POST", "/api/notebooks/move", json={"source_path": source_path, "target_path": target_path}
        )

    async def move_note(self, source_folder: str, target_folder: str, note_id: str) -> None:
        await self._request(
            "POST",
            "/api/notes/move",
            json={"source_folder": source_folder, "target_folder": target_folder, "note_id": note_id},
        )

    async def save_attachment(self, folder: str, note_id: str, file_name: str, data: bytes) -> str:
        payload = await self._request(
            "POST",
            "/api/attachments",
            json={
                "folder": folder,
                "note_id": note_id,
                "file_name": file_name,
                "data": base64.b64encode(data).decode("ascii"),
            },
        )
        return payload["path"]

    async def search_notes(self, base_path: str, query: str) -> list[SearchHit]:
        payload = await self._request("GET", "/api/search", params={"base": base_path, "q": query})
        return [SearchHit.from_dict(r) for r in payload.get("results") or []]

    async def get_tags(self, base_path: str, note_path: str) -> list[str]:
        payload = await self._request("GET", "/api/tags", params={"base": base_path, "note": note_path})
        return list(payload.get("tags") or [])

    async def set_tags(self, base_path: str, note_path: str, tags: list[str]) -> None:
        await self._request("POST", "/api/tags", json={"base_path": base_path, "note_path": note_path, "tags": tags})

    async def toggle_favorite(self, base_path: str, note_path: str) -> WorkspaceSettings:
        payload = await self._request(
            "POST", "/api/settings/favorite", json={"base_path": base_path, "note_path": note_path}
        )
        return WorkspaceSettings.from_dict(payload["settings"])

    async def load_settings(self, base_path: str) -> WorkspaceSettings:
        payload = await self._request("GET", "/api/settings", params={"base": base_path})
        return WorkspaceSettings.from_dict(payload.get("settings"))

    async def save_settings(self, base_path: str, settings: WorkspaceSettings) -> None:
        await self._request("PUT", "/api/settings", json={"base_path": base_path, "settings": settings.to_dict()})

    def watch(self, path: str, on_change: Callable[[], None]) -> Callable[[], None]:
        """Poll the server's tree version and signal whenever it moves."""

        async def poll() -> None:
            last: Optional[int] = None
            while True:
                try:
                    payload = await self._request("GET", "/api/workspace/version")
                except TransientIOError as exc:
                    logger.debug("Version poll failed: %s", exc)
                else:
                    version = payload.get("version")
                    if last is not None and version != last:
                        on_change()
                    last = version
                await asyncio.sleep(self.poll_interval)

        task = asyncio.get_running_loop().create_task(poll())
        return task.cancel


class LocalBackend(_TreePush):
    """Runs the filesystem adapters in worker threads of the current loop."""

    def __init__(self, root: str | Path) -> None:
        super().__init__()
        self.root = Path(root).expanduser().resolve()

    async def select_workspace(self, path: str) -> str:
        root = Path(path).expanduser().resolve()
        if not root.is_dir():
            raise TransientIOError(f"Workspace directory does not exist: {root}")
        self.root = root
        return str(root)

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except (OSError, FileAccessError, ValueError) as exc:
            raise TransientIOError(str(exc)) from exc

    async def fetch_children(self, path: str) -> list[NotebookNode]:
        listed = await self._call(files.list_notebooks, self.root, path)
        return [NotebookNode.from_dict(n) for n in listed]

    async def list_notes(self, folder: str) -> list[Note]:
        listed = await self._call(files.list_notes, self.root, folder)
        return [Note.from_dict(n) for n in listed]

    async def save_note(self, folder: str, note_id: str, content: str) -> None:
        await self._call(files.save_note, self.root, folder, note_id, content)

    async def rename_note(self, folder: str, old_id: str, new_id: str) -> None:
        await self._call(files.rename_note, self.root, folder, old_id, new_id)

    async def delete_note(self, folder: str, note_id: str) -> None:
        await self._call(files.delete_note, self.root, folder, note_id)

    async def create_notebook(self, base_path: str, name: str) -> NotebookNode:
        created = await self._call(files.create_notebook, self.root, base_path, name)
        return NotebookNode.from_dict(created)

    async def import_folder(self, base_path: str, folder_path: str) -> NotebookNode:
        imported = await self._call(files.import_folder, self.root, base_path, folder_path)
        return NotebookNode.from_dict(imported)

    async def move_notebook(self, source_path: str, target_path: str) -> None:
        await self._call(files.move_notebook, self.root, source_path, target_path)

    async def move_note(self, source_folder: str, target_folder: str, note_id: str) -> None:
        await self._call(files.move_note, self.root, source_folder, target_folder, note_id)

    async def save_attachment(self, folder: str, note_id: str, file_name: str, data: bytes) -> str:
        return await self._call(files.save_attachment, self.root, folder, note_id, file_name, data)

    async def search_notes(self, base_path: str, query: str) -> list[SearchHit]:
        results = await self._call(files.search_notes, self.root, base_path, query)
        return [SearchHit.from_dict(r) for r in results]

    async def get_tags(self, base_path: str, note_path: str) -> list[str]:
        return await self._call(settings_store.get_note_tags, base_path, note_path)

    async def set_tags(self, base_path: str, note_path: str, tags: list[str]) -> None:
        await self._call(settings_store.set_note_tags, base_path, note_path, tags)

    async def toggle_favorite(self, base_path: str, note_path: str) -> WorkspaceSettings:
        return await self._call(settings_store.toggle_favorite, base_path, note_path)

    async def load_settings(self, base_path: str) -> WorkspaceSettings:
        return await self._call(settings_store.load_settings, base_path)

    async def save_settings(self, base_path: str, settings: WorkspaceSettings) -> None:
        await self._call(settings_store.save_settings, base_path, settings)

    def watch(self, path: str, on_change: Callable[[], None]) -> Callable[[], None]:
        from azimuth.server.watcher import directory_watcher

        loop = asyncio.get_running_loop()
        return directory_watcher.watch(path, lambda: loop.call_soon_threadsafe(on_change))
