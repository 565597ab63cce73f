"""Durable key-value store used by the session cache and the local stores."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from heartbeat.config import DATA_DIR, STORE_FILE_NAME
from heartbeat.errors import StorageCorruptError

logger = logging.getLogger(__name__)


class KeyValueStore:
    """String key-value store backed by a single JSON file.

    Keys and values are plain strings, like browser local storage. When no
    path is given the store only lives in memory.
    """

    def __init__(self, path: Optional[Path] = None):
        """Initialize the store, loading any existing contents from ``path``."""
        self.path = Path(path) if path is not None else None
        self._data: Dict[str, str] = {}
        if self.path is not None:
            self._data = self._read_file()

    @classmethod
    def default(cls) -> "KeyValueStore":
        """Open the store in the configured data directory."""
        data_dir = Path(DATA_DIR)
        data_dir.mkdir(parents=True, exist_ok=True)
        return cls(data_dir / STORE_FILE_NAME)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._write_file()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._write_file()

    def get_json(self, key: str) -> Any:
        """
        Decode the JSON value stored under ``key``.

        Returns None when the key is absent.

        Raises:
            StorageCorruptError: if the stored value is not valid JSON
        """
        raw = self.get(key)
        if raw is None or raw == "":
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageCorruptError(key, str(e)) from e

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))

    def _read_file(self) -> Dict[str, str]:
        """Load the backing file. A missing or unreadable file yields an empty store."""
        if not self.path.exists():
            return {}
        try:
            contents = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable store file %s: %s", self.path, e)
            return {}
        if not isinstance(contents, dict):
            logger.warning("Ignoring store file %s: expected a JSON object", self.path)
            return {}
        return {str(k): v for k, v in contents.items() if isinstance(v, str)}

    def _write_file(self) -> None:
        """Rewrite the backing file (write to a temp file, then rename)."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
