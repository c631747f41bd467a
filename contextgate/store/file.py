"""
File-based secure store.
Keeps one JSON document per key inside a directory.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import aiofiles

from ..errors import StorageError
from .types import SecureStore

logger = logging.getLogger(__name__)


class FileSecureStore(SecureStore):
    """Directory of JSON documents, one per key."""

    def __init__(self, storage_dir: str = "./contextgate-store"):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, key: str) -> Path:
        return self.storage_dir / f"{quote(key, safe='')}.json"

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            async with self._lock:
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(json.dumps(value, default=str))
                os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError("put", key, "Failed to write record", e)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except (OSError, ValueError) as e:
            raise StorageError("get", key, "Failed to read record", e)

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        async with self._lock:
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError("delete", key, "Failed to remove record", e)

    async def keys(self, prefix: str = "") -> List[str]:
        found = [unquote(p.stem) for p in self.storage_dir.glob("*.json")]
        return sorted(k for k in found if k.startswith(prefix))
