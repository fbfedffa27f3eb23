from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol


DEFAULT_STATE_PATH_ENV = "SAVESYNC_STATE_PATH"
SAVE_KEY = "savestate"

logger = logging.getLogger("state.local_store")


def _default_state_file() -> Path:
    # Prefer explicit env var, else project-local .cache folder
    path = os.environ.get(DEFAULT_STATE_PATH_ENV)
    if path:
        return Path(path)
    return Path(".cache") / "savestate.json"


class LocalStore(Protocol):
    """String key/value persistence the program keeps its save blob in."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class JsonFileStore:
    """
    Tiny JSON-file key/value store, the desktop stand-in for browser local storage.

    - Backed by a single JSON object: { key: value, ... } with string values.
    - Every `set` rewrites the file through a temp file + rename, so a crash
      mid-write leaves the previous content intact.
    - A corrupt or unreadable file is treated as empty (logged), matching
      a cleared local storage.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else _default_state_file()
        self._data: Dict[str, str] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable local store %s: %s", self._path, exc)
            return
        if isinstance(raw, dict):
            self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        os.replace(tmp, self._path)

    def get(self, key: str) -> Optional[str]:
        self._ensure_loaded()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._ensure_loaded()
        self._data[key] = value
        self._save()


class MemoryStore:
    """In-process store; useful for embedding and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
