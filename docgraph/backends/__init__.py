"""Storage backends for docgraph."""

from .base import (
    ROOT_IDENTIFIER,
    MembershipEntry,
    ObjectRow,
    SchemaTree,
    StorageBackend,
)
from .memory import MemoryBackend
from .sqlite import SQLiteBackend

__all__ = [
    "ROOT_IDENTIFIER",
    "MembershipEntry",
    "ObjectRow",
    "SchemaTree",
    "StorageBackend",
    "MemoryBackend",
    "SQLiteBackend",
]
