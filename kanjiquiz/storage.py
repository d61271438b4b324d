"""
Key-value settings persisted as JSON on disk.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Dict


class SettingsStore:
    """String key-value store written to disk on every change."""

    def __init__(self, path: str = "storage.json"):
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._values: Dict[str, str] = {}

    def load(self) -> None:
        """Read the store from disk, creating the file if it does not exist."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            self.logger.info(f"No settings file at {self.path}, starting empty")
            self._write()
            return
        except (json.JSONDecodeError, OSError) as e:
            self.logger.error(f"Could not read settings file {self.path}: {e}")
            return

        if not isinstance(data, dict):
            self.logger.error(f"Settings file {self.path} is not a JSON object")
            return

        with self._lock:
            self._values = {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str:
        """Return the stored value, or an empty string if unset."""
        with self._lock:
            return self._values.get(key, "")

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = str(value)
            self._write()

    def _write(self) -> None:
        with self._lock:
            data = dict(self._values)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            self.logger.error(f"Could not write settings file {self.path}: {e}")
