"""
Secure store abstractions and implementations.
"""

from typing import Optional

from .types import SecureStore
from .memory import MemorySecureStore
from .file import FileSecureStore


def create_secure_store(store_type: str = "memory", path: Optional[str] = None) -> SecureStore:
    """
    Create a secure store instance.

    Args:
        store_type: "memory" or "file"
        path: Directory for the file store

    Raises:
        ValueError: If store_type is not supported
    """
    store_type = store_type.lower()
    if store_type == "memory":
        return MemorySecureStore()
    if store_type == "file":
        return FileSecureStore(path or "./contextgate-store")
    raise ValueError(f"Unsupported storage type: {store_type}")


__all__ = [
    "SecureStore",
    "MemorySecureStore",
    "FileSecureStore",
    "create_secure_store",
]
