"""
docgraph - Document graphs stored in a relational database.

A Database holds one root value: any JSON-compatible graph. Values placed in
a Collection are "exploded" into rows of their own, so deeply nested data
can be loaded entry by entry and queried without reading the whole graph.

Quick Start:
    import asyncio
    from docgraph import connect

    async def main():
        db = connect("sqlite:///graph.db")

        # Collections can be filled before they are stored anywhere
        entitlements = db.collection()
        await entitlements.set("0", {"name": "Guild 1's entitlement."})

        await db.set({"guilds": db.collection()})
        root = await db.get()
        await root["guilds"].set("1", {"entitlements": entitlements, "other": 9})

        # One fetch for every entitlement of every guild
        names = await root["guilds"].query(
            lambda guild: guild.field("entitlements").nested(
                lambda entitlement: entitlement.field("name")
            )
        )

        await db.close()

    asyncio.run(main())

Supported backends:
    - memory://           In-memory storage (testing)
    - sqlite:///path.db   SQLite file storage
    - sqlite:///:memory:  SQLite in-memory

Key Classes:
    - Database: Root value and shared backend context
    - Collection: Key/value map whose entries are stored as separate rows
    - Query: Lazily built path through collection entries
    - connect(): Create a Database from a URL
"""

from .core import Database, connect
from .collection import Bound, Collection, Unbound
from .query import Query, QueryCompiler
from .serialization import GraphSerializer
from .backends import (
    MembershipEntry,
    MemoryBackend,
    ObjectRow,
    SQLiteBackend,
    StorageBackend,
)
from .exceptions import (
    StoreError,
    ConnectionError,
    ConstructorMisuse,
    NotBoundError,
    SchemaConflict,
    PathNotFound,
    InvalidQueryError,
    SerializationError,
)

__all__ = [
    # Main API
    "Database",
    "connect",
    "Collection",
    "Bound",
    "Unbound",
    "Query",
    "QueryCompiler",
    "GraphSerializer",
    # Backends
    "StorageBackend",
    "ObjectRow",
    "MembershipEntry",
    "MemoryBackend",
    "SQLiteBackend",
    # Exceptions
    "StoreError",
    "ConnectionError",
    "ConstructorMisuse",
    "NotBoundError",
    "SchemaConflict",
    "PathNotFound",
    "InvalidQueryError",
    "SerializationError",
]

__version__ = "0.1.0"
