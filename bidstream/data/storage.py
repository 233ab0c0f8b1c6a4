"""
Durable local storage for client state.

One JSON document on disk, keyed by name (wallet record, currency
preference, tracked auctions, failed lookups). Writes go to a temp file
first and are atomically renamed over the existing file so the file is never
left half-written.

Corrupt data is never propagated: an unreadable file loads as empty, and a
value that fails to parse is dropped and replaced by the caller's default.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from config.settings import STORAGE_PATH
from bidstream.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Storage keys
WALLET_KEY = "wallet"
CURRENCY_KEY = "currency-preference"
TRACKED_KEY = "trackedAuctions"
FAILED_LOOKUPS_KEY = "failed-lookups"


class LocalStorage:
    """
    Key/value store persisted as a single JSON object.

    Usage:
        storage = LocalStorage("~/.bidstream/storage.json")
        storage.save("currency-preference", "usd")
        pref = storage.load("currency-preference", "native", parse=str)
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or STORAGE_PATH).expanduser()
        self._data: dict[str, Any] = {}
        self.reload()

    def reload(self):
        """Re-read the backing file, discarding it if corrupt."""
        try:
            self._data = self._read_file()
        except StorageError as e:
            logger.warning(f"Discarding local storage: {e}")
            self._data = {}

    def load(
        self,
        key: str,
        default: T,
        parse: Optional[Callable[[Any], T]] = None,
    ) -> T:
        """
        Load a typed value.

        Args:
            key: Storage key
            default: Returned when the key is absent or corrupt
            parse: Converts the raw JSON value; raising ValueError,
                TypeError or KeyError marks the value corrupt

        Returns:
            Parsed value or default
        """
        if key not in self._data:
            return default

        raw = self._data[key]
        if parse is None:
            return raw

        try:
            return parse(raw)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Corrupt value for '{key}' reset to default: {e}")
            self.remove(key)
            return default

    def save(self, key: str, value: Any):
        """Store a JSON-serializable value and flush to disk."""
        self._data[key] = value
        self._flush()

    def remove(self, key: str):
        if key in self._data:
            del self._data[key]
            self._flush()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def _read_file(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a JSON object")
        return data

    def _flush(self):
        """Atomic write: temp file + rename. Failures keep in-memory state."""
        temp_file = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            temp_file.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Local storage write failed ({self.path}): {e}")
