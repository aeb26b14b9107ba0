"""
Durable key-value storage

The stores never touch the filesystem directly. They talk to a
``KeyValueStorage`` collaborator that holds one JSON document per key:

- JsonFileStorage: one ``<key>.json`` file per key, written atomically
- MemoryStorage: in-process dict, used by tests and ephemeral sessions

``KeyPersistence`` narrows a storage to the ``load()/save(snapshot)``
interface the pattern stores need.
"""

import asyncio
import copy
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Asynchronous key-value storage of JSON-serialisable documents"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the document stored under key, or None if absent"""

    @abstractmethod
    async def set(self, values: Dict[str, Any]) -> None:
        """Store every key/document pair in values"""

    @abstractmethod
    async def remove(self, keys: Iterable[str]) -> None:
        """Remove keys; missing keys are ignored"""


class MemoryStorage(KeyValueStorage):
    """In-memory storage. Documents are deep-copied in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def set(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self._data[key] = copy.deepcopy(value)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of everything stored (for inspection)"""
        return copy.deepcopy(self._data)


class JsonFileStorage(KeyValueStorage):
    """
    File-backed storage: one JSON file per key inside ``data_dir``.

    Writes go to a temp file first and are moved into place, so a crash
    mid-write never leaves a truncated document behind.
    """

    def __init__(self, data_dir: str = "data/site_memory"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        safe = re.sub(r'[^\w\-.]', '_', key)
        return self.data_dir / f"{safe}.json"

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, values: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_all, values)

    async def remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._remove_all, list(keys))

    def _read(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            raise StorageError(f"Could not read {path}: {e}", key=key) from e

    def _write_all(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            path = self._path_for(key)
            temp_file = path.with_suffix('.tmp')
            try:
                temp_file.write_text(json.dumps(value, indent=2), encoding='utf-8')
                temp_file.replace(path)
            except (OSError, TypeError, ValueError) as e:
                raise StorageError(f"Could not write {path}: {e}", key=key) from e

    def _remove_all(self, keys: Iterable[str]) -> None:
        for key in keys:
            path = self._path_for(key)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Could not remove {path}: {e}", key=key) from e


class KeyPersistence:
    """Binds one storage key to a load/save pair"""

    def __init__(self, storage: KeyValueStorage, key: str):
        self.storage = storage
        self.key = key

    async def load(self) -> Optional[Any]:
        return await self.storage.get(self.key)

    async def save(self, snapshot: Any) -> None:
        await self.storage.set({self.key: snapshot})
