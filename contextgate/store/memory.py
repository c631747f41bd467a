"""
In-memory secure store implementation.
Suitable for development, testing and single-process deployments; all data is
lost when the process terminates.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional

from .types import SecureStore


class MemorySecureStore(SecureStore):
    """Dictionary-backed secure store."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> List[str]:
        async with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))
