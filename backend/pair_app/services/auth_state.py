"""
Multi-file credential store.

Mirrors the Baileys multi-file auth layout so a session directory can be
handed to any Baileys client: ``creds.json`` plus one ``<type>-<id>.json``
file per signal key. Values are kept in the bridge's JSON encoding (binary
fields arrive as ``{"type": "Buffer", "data": "<base64>"}``) and written
back untouched.
"""

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from pair_app.core.exceptions import IOFailure

CREDS_FILE = "creds.json"

# Longest first so "sender-key-memory" wins over "sender-key"
KEY_TYPES = tuple(sorted((
    "pre-key",
    "session",
    "sender-key",
    "sender-key-memory",
    "app-state-sync-key",
    "app-state-sync-version",
    "lid-mapping",
), key=len, reverse=True))


def fix_file_name(name: str) -> str:
    return name.replace("/", "__").replace(":", "-")


def split_key_file_name(stem: str) -> Optional[Tuple[str, str]]:
    for key_type in KEY_TYPES:
        prefix = f"{key_type}-"
        if stem.startswith(prefix) and len(stem) > len(prefix):
            return key_type, stem[len(prefix):].replace("__", "/")
    return None


def key_file_name(key_type: str, key_id: str) -> str:
    return fix_file_name(f"{key_type}-{key_id}.json")


def _write_json(path: Path, data: Any):
    """Write to a temp file in the same directory, then rename over the target"""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _read_json(path: Path) -> Optional[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def init_auth_creds() -> Dict[str, Any]:
    """Fresh, unregistered credentials; the bridge fills in key material on first open"""
    return {"registered": False}


@dataclass
class AuthState:
    creds: Dict[str, Any] = field(default_factory=init_auth_creds)
    keys: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    _dirty_keys: Set[Tuple[str, str]] = field(default_factory=set, repr=False)

    @property
    def registered(self) -> bool:
        return bool(self.creds.get("registered"))

    def apply_update(self, creds: Optional[Dict[str, Any]] = None,
                     keys: Optional[Dict[str, Dict[str, Any]]] = None):
        """Merge a credential-update payload. A key value of None removes that key."""
        if creds:
            self.creds.update(creds)
        for key_type, entries in (keys or {}).items():
            bucket = self.keys.setdefault(key_type, {})
            for key_id, value in entries.items():
                if value is None:
                    bucket.pop(key_id, None)
                else:
                    bucket[key_id] = value
                self._dirty_keys.add((key_type, key_id))

    def to_payload(self) -> Dict[str, Any]:
        return {"creds": self.creds, "keys": self.keys}


def _load_sync(directory: Path) -> AuthState:
    directory.mkdir(parents=True, exist_ok=True)
    state = AuthState()

    creds = _read_json(directory / CREDS_FILE)
    if creds is not None:
        state.creds = creds

    for path in sorted(directory.glob("*.json")):
        if path.name == CREDS_FILE or path.name.startswith(".tmp-"):
            continue
        parsed = split_key_file_name(path.stem)
        if parsed is None:
            continue
        key_type, key_id = parsed
        value = _read_json(path)
        if value is not None:
            state.keys.setdefault(key_type, {})[key_id] = value

    return state


def _persist_sync(directory: Path, state: AuthState):
    directory.mkdir(parents=True, exist_ok=True)
    _write_json(directory / CREDS_FILE, state.creds)

    dirty = list(state._dirty_keys)
    for key_type, key_id in dirty:
        path = directory / key_file_name(key_type, key_id)
        value = state.keys.get(key_type, {}).get(key_id)
        if value is None:
            if path.exists():
                path.unlink()
        else:
            _write_json(path, value)
        state._dirty_keys.discard((key_type, key_id))


async def load_auth_state(directory: Path) -> Tuple[AuthState, Callable[[], Awaitable[None]]]:
    """
    Load credentials from ``directory`` (fresh unregistered state if absent).

    Returns the state and a ``persist`` coroutine function that writes the
    current in-memory state back. Only the owning session may call it.
    """
    directory = Path(directory)
    try:
        state = await asyncio.to_thread(_load_sync, directory)
    except (OSError, ValueError) as e:
        raise IOFailure(f"Could not load credentials from {directory}", e) from e

    async def persist():
        try:
            await asyncio.to_thread(_persist_sync, directory, state)
        except OSError as e:
            raise IOFailure(f"Could not persist credentials to {directory}", e) from e

    return state, persist


def parse_session_string(session_string: str) -> Dict[str, Any]:
    """Decode an exported ``<prefix>;;;<json creds>`` session string"""
    parts = session_string.split(";;;")
    if len(parts) != 2:
        raise ValueError("Invalid session ID format")
    try:
        data = json.loads(parts[1])
    except json.JSONDecodeError:
        raise ValueError("Invalid JSON format")
    if not isinstance(data, dict):
        raise ValueError("Invalid JSON format")
    return data


def seed_creds(directory: Path, creds: Dict[str, Any]) -> bool:
    """Write creds.json into an empty session directory. Returns False if creds already exist."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / CREDS_FILE
    if path.exists():
        return False
    _write_json(path, creds)
    return True
