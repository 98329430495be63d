from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

GLOBAL_CONFIG = Path.home() / ".azimuth_config.json"

DEFAULT_AUTOSAVE_DELAY_MS = 1000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765


def _read_global_config() -> dict:
    """Return the parsed global config, or an empty dict on error/missing."""
    if not GLOBAL_CONFIG.exists():
        return {}
    try:
        payload = json.loads(GLOBAL_CONFIG.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return {}
    return payload if isinstance(payload, dict) else {}


def _update_global_config(updates: dict) -> None:
    """Merge updates into global config file."""
    existing = _read_global_config()
    existing.update(updates)
    GLOBAL_CONFIG.parent.mkdir(parents=True, exist_ok=True)
    GLOBAL_CONFIG.write_text(json.dumps(existing, indent=2), encoding="utf-8")


def load_last_workspace() -> Optional[str]:
    env = os.getenv("AZIMUTH_WORKSPACE")
    if env:
        return env
    last = _read_global_config().get("last_workspace")
    return last if isinstance(last, str) else None


def save_last_workspace(path: str) -> None:
    _update_global_config({"last_workspace": path})


def load_known_workspaces() -> list[dict[str, str]]:
    """Load previously used workspaces with display names, most recent first."""
    entries = _read_global_config().get("workspaces", [])
    result: list[dict[str, str]] = []
    if isinstance(entries, list):
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            path = entry.get("path")
            if not path:
                continue
            name = entry.get("name") or Path(path).name
            result.append({"name": str(name), "path": str(path)})
    return result


def remember_workspace(path: str, name: Optional[str] = None) -> None:
    """Move a workspace to the top of the known list and make it the last one used."""
    normalized_path = str(Path(path))
    display_name = name or Path(normalized_path).name
    workspaces = [w for w in load_known_workspaces() if w.get("path") != normalized_path]
    workspaces.insert(0, {"name": display_name, "path": normalized_path})
    _update_global_config({"workspaces": workspaces, "last_workspace": normalized_path})


def load_autosave_delay_ms() -> int:
    value = _read_global_config().get("autosave_delay_ms")
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return DEFAULT_AUTOSAVE_DELAY_MS


def load_host() -> str:
    return os.getenv("AZIMUTH_HOST") or DEFAULT_HOST


def load_port() -> int:
    raw = os.getenv("AZIMUTH_PORT")
    if raw:
        try:
            return int(raw)
        except ValueError:
            pass
    return DEFAULT_PORT


def load_api_base() -> str:
    """Base URL of the local API: the configured value, else built from host and port."""
    base = _read_global_config().get("api_base")
    if isinstance(base, str) and base.strip():
        return base.strip().rstrip("/")
    return f"http://{load_host()}:{load_port()}"
