"""
Device-local key-value storage for cache blobs and the tracked wallet list.

Values are opaque strings (JSON blobs); parsing them is the caller's job.
"""

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional


STORAGE_KEYS = {
    "wallets": "btc_tracker_wallets",
    "settings": "btc_tracker_settings",
    "balance_cache": "btc_tracker_balance_cache",
    "transaction_cache": "btc_tracker_transaction_cache",
}

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(ABC):
    """Minimal string key-value interface."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        pass


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and one-shot runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    One file per key under a data directory.

    Writes go to a temporary file that is then renamed over the target, so a
    crash mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=f".{key}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
