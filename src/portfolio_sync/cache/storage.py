"""
Key/value storage backends for the local cache.

Values are strings, as in browser local storage. Multi-key writes and
removals are applied as one unit: either every key in the batch changes or
none does.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, Union

from ..exceptions import StorageError, StorageQuotaExceededError
from ..utils import get_logger

logger = get_logger(__name__)


class Storage(Protocol):
    """Minimal storage interface used by LocalCache."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_items(self, items: Dict[str, str]) -> None:
        ...

    def remove_items(self, keys: Iterable[str]) -> None:
        ...


def _serialized_size(data: Dict[str, str]) -> int:
    return len(json.dumps(data, separators=(',', ':')).encode('utf-8'))


def _check_quota(data: Dict[str, str], quota_bytes: Optional[int]) -> None:
    if quota_bytes is None:
        return
    required = _serialized_size(data)
    if required > quota_bytes:
        raise StorageQuotaExceededError(required=required, quota=quota_bytes)


class MemoryStorage:
    """In-process storage with the same quota semantics as JsonFileStorage."""

    def __init__(self, quota_bytes: Optional[int] = None, initial: Optional[Dict[str, str]] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_items(self, items: Dict[str, str]) -> None:
        candidate = {**self._data, **items}
        _check_quota(candidate, self.quota_bytes)
        self._data = candidate

    def remove_items(self, keys: Iterable[str]) -> None:
        keys = set(keys)
        self._data = {k: v for k, v in self._data.items() if k not in keys}

    def keys(self):
        return list(self._data)


class JsonFileStorage:
    """
    Storage backed by one JSON object on disk.

    Every write rewrites the whole file through a temporary file in the same
    directory followed by os.replace, so readers never observe a partially
    applied batch. An unreadable or corrupt file reads as empty.
    """

    def __init__(self, path: Union[str, Path], quota_bytes: Optional[int] = None):
        self.path = Path(path).expanduser()
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring storage file {self.path}: top level is not an object")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        _check_quota(data, self.quota_bytes)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                'w', encoding='utf-8', dir=self.path.parent,
                prefix=f".{self.path.name}.", suffix='.tmp', delete=False
            ) as tmp:
                tmp_name = tmp.name
                json.dump(data, tmp, separators=(',', ':'))
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_items(self, items: Dict[str, str]) -> None:
        with self._lock:
            data = self._read_all()
            data.update(items)
            self._write_all(data)

    def remove_items(self, keys: Iterable[str]) -> None:
        keys = set(keys)
        with self._lock:
            data = self._read_all()
            if not keys & data.keys():
                return
            self._write_all({k: v for k, v in data.items() if k not in keys})
