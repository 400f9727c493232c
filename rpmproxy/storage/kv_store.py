from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import aiofiles

from rpmproxy.domain.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """
    Abstract base class for the key-value state store.

    A plain mapping from string keys to byte values. There are no
    transactions and no compare-and-swap: concurrent writers to the same key
    race and the last write wins.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored value, or None if the key is absent."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Deleting an absent key is not an error."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._data: Dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """
    Durable store keeping one file per key under `<data_dir>/kv`.

    Keys are percent-encoded into file names. Writes go to a temporary file
    first and are moved into place, so readers never see a partial value.
    """

    def __init__(self, data_dir: Path):
        self._root = data_dir / "kv"

        # Ensure data directory exists
        if not self._root.exists():
            self._root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}.json"

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read key {key}: {e}")
            raise StorageUnavailable(f"Failed to read {key}: {e}") from e

    async def put(self, key: str, value: bytes) -> None:
        path = self._path_for(key)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to write key {key}: {e}")
            tmp_path.unlink(missing_ok=True)
            raise StorageUnavailable(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete key {key}: {e}")
            raise StorageUnavailable(f"Failed to delete {key}: {e}") from e
