"""Key-value persistence backends.

The note store treats persistence as an opaque get/set store with a size
quota, modelled on the browser extension local storage area. Each slot is
measured as the UTF-8 length of its key plus its compact JSON encoding.
"""
import json
import logging
import os

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable

from quicknotes.utils.dataModels import DEFAULT_QUOTA_BYTES
from quicknotes.utils.errors import PersistenceUnavailable, StorageFull

logger = logging.getLogger(__name__)


def encoded_size(key: str, value: Any) -> int:
    blob = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return len(key.encode("utf-8")) + len(blob.encode("utf-8"))


def _json_copy(value: Any) -> Any:
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError) as exc:
        raise PersistenceUnavailable(f"Value is not JSON serializable: {exc}") from exc


class KeyValueStore(ABC):
    quota_bytes: int = DEFAULT_QUOTA_BYTES

    @abstractmethod
    def _read_all(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _write_all(self, data: Dict[str, Any]) -> None:
        ...

    def get(self, key: str, default: Any = None) -> Any:
        data = self._read_all()
        if key not in data:
            return default
        return _json_copy(data[key])

    def set(self, key: str, value: Any) -> None:
        value = _json_copy(value)
        data = self._read_all()
        projected = self.bytes_in_use() - self._slot_size(data, key) + encoded_size(key, value)
        if projected > self.quota_bytes:
            raise StorageFull(
                f"Storage quota exceeded ({projected} of {self.quota_bytes} bytes). Please delete some notes.",
                limit=self.quota_bytes,
                actual=projected,
            )
        data = dict(data)
        data[key] = value
        self._write_all(data)

    def remove(self, keys: Iterable[str] | str) -> None:
        if isinstance(keys, str):
            keys = [keys]
        data = dict(self._read_all())
        changed = False
        for key in keys:
            if key in data:
                del data[key]
                changed = True
        if changed:
            self._write_all(data)

    def bytes_in_use(self) -> int:
        return sum(encoded_size(k, v) for k, v in self._read_all().items())

    @staticmethod
    def _slot_size(data: Dict[str, Any], key: str) -> int:
        return encoded_size(key, data[key]) if key in data else 0


class MemoryStore(KeyValueStore):
    """In-process store. `writes` counts successful set/remove calls."""

    def __init__(self, quota_bytes: int = DEFAULT_QUOTA_BYTES, initial: Dict[str, Any] | None = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, Any] = _json_copy(initial) if initial else {}
        self.writes = 0

    def _read_all(self) -> Dict[str, Any]:
        return self._data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self._data = data
        self.writes += 1


class JsonFileStore(KeyValueStore):
    """All slots in a single JSON file, replaced atomically on every write."""

    def __init__(self, path: Path, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        self.path = Path(path)
        self.quota_bytes = quota_bytes

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Cannot read %s: %s", self.path, exc)
            raise PersistenceUnavailable(f"Cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceUnavailable(f"{self.path} does not hold a JSON object")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, separators=(",", ":"))
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error("Cannot write %s: %s", self.path, exc)
            raise PersistenceUnavailable(f"Cannot write {self.path}: {exc}") from exc
