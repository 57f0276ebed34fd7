"""Persistent per-user storage."""

from .cipher import Cipher, FernetCipher, XorCipher
from .media import InMemoryMedium, SQLiteMedium, StorageMedium
from .store import PersistentStore, StorageInfo, is_sensitive_field, partition_fields

__all__ = [
    "Cipher",
    "FernetCipher",
    "InMemoryMedium",
    "PersistentStore",
    "SQLiteMedium",
    "StorageInfo",
    "StorageMedium",
    "XorCipher",
    "is_sensitive_field",
    "partition_fields",
]
