import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Process-local key/value storage with the browser storage interface."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """Key/value storage kept as one JSON object in a file on disk.

    Every call re-reads the file so several processes sharing the file see
    each other's writes.
    """

    def __init__(self, path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable storage file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring storage file %s: not a JSON object", self.path)
            return {}
        return data

    def _write(self, items: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temporary = self.path.with_suffix(self.path.suffix + ".tmp")
        temporary.write_text(json.dumps(items), encoding="utf-8")
        os.replace(temporary, self.path)

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = str(value)
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if key in items:
            del items[key]
            self._write(items)
