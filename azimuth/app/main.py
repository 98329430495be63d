from __future__ import annotations

import argparse
import asyncio
import logging
import os
import socket
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from azimuth.app import config
from azimuth.app.backend import HttpBackend, LocalBackend
from azimuth.app.errors import TransientIOError
from azimuth.app.models import NotebookNode
from azimuth.server import api as api_module
from azimuth.server.watcher import directory_watcher

logger = logging.getLogger(__name__)


def _debug_enabled(var_name: str) -> bool:
    return os.getenv(var_name, "0") not in ("0", "false", "False", "", None)


def _find_open_port(host: str, preferred: int) -> int:
    """Try preferred port, otherwise fall back to an ephemeral port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, preferred))
            return s.getsockname()[1]
        except OSError:
            pass
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def _resolve_workspace(path: Optional[str]) -> Path:
    chosen = path or config.load_last_workspace()
    if not chosen:
        print("Error: No workspace specified. Use --workspace <path>", file=sys.stderr)
        sys.exit(1)
    workspace = Path(chosen).expanduser().resolve()
    if not workspace.is_dir():
        print(f"Error: Workspace not found: {workspace}", file=sys.stderr)
        sys.exit(1)
    return workspace


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="azimuth", description="Azimuth notebook workspace")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the local API server")
    serve.add_argument("--workspace", help="Workspace directory to serve")
    serve.add_argument("--host", default=None, help="Bind address (default: AZIMUTH_HOST or 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Preferred port; 0 picks a free one")

    tree = sub.add_parser("tree", help="Print the top level notebooks of a workspace")
    tree.add_argument("--workspace", help="Workspace directory")
    tree.add_argument("--remote", action="store_true", help="Ask the running API server instead of reading the disk")

    search = sub.add_parser("search", help="Search notes in a workspace")
    search.add_argument("query")
    search.add_argument("--workspace", help="Workspace directory")
    search.add_argument("--remote", action="store_true", help="Ask the running API server instead of reading the disk")
    return parser.parse_args(argv)


def _serve(args: argparse.Namespace) -> None:
    host = args.host or config.load_host()
    preferred = args.port if args.port is not None else config.load_port()
    port = _find_open_port(host, preferred)
    if args.workspace or config.load_last_workspace():
        workspace = _resolve_workspace(args.workspace)
        api_module.select_root(str(workspace))
        config.remember_workspace(str(workspace))
        logger.info("Serving workspace %s", workspace)
    print(f"Azimuth API listening on http://{host}:{port}/")
    try:
        uvicorn.run(
            api_module.get_app(),
            host=host,
            port=port,
            log_level=os.getenv("UVICORN_LOG_LEVEL", "info"),
        )
    finally:
        directory_watcher.stop()


def _print_tree(nodes: list[NotebookNode]) -> None:
    for node in nodes:
        marker = "+" if node.children else " "
        print(f"{marker} {node.name}")


async def _query(args: argparse.Namespace, workspace: Path, method: str, *params):
    """Run one backend call, either in-process or against the running server."""
    if not args.remote:
        return await getattr(LocalBackend(workspace), method)(*params)
    backend = HttpBackend(config.load_api_base())
    try:
        await backend.select_workspace(str(workspace))
        return await getattr(backend, method)(*params)
    finally:
        await backend.aclose()


def _tree(args: argparse.Namespace) -> int:
    workspace = _resolve_workspace(args.workspace)
    try:
        nodes = asyncio.run(_query(args, workspace, "fetch_children", str(workspace)))
    except TransientIOError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _print_tree(nodes)
    return 0


def _search(args: argparse.Namespace) -> int:
    workspace = _resolve_workspace(args.workspace)
    try:
        hits = asyncio.run(_query(args, workspace, "search_notes", str(workspace), args.query))
    except TransientIOError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    for hit in hits:
        print(f"{hit.folder_name}/{hit.note_id} ({hit.match_count}): {hit.snippet}")
    if not hits:
        print("No matches")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    level = logging.DEBUG if _debug_enabled("AZIMUTH_DEBUG") else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.command == "serve":
        _serve(args)
        return 0
    if args.command == "tree":
        return _tree(args)
    return _search(args)


if __name__ == "__main__":
    sys.exit(main())
