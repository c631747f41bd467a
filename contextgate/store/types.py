"""
Secure store abstraction for durable persistence of granted records.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class SecureStore(ABC):
    """
    Key/value backend the permission and consent stores persist records to.

    Values are JSON-compatible dictionaries. Implementations raise
    ``contextgate.errors.StorageError`` on backend failures.
    """

    @abstractmethod
    async def put(self, key: str, value: Dict[str, Any]) -> None:
        """
        Store a value under a key, replacing any previous value.

        Args:
            key: Record key, e.g. ``permission:<id>``
            value: JSON-compatible record
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a value.

        Returns:
            The stored record, or None when the key is unknown
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with prefix."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass
