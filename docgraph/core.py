"""Core Database class: the root object and the shared backend context."""

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urlparse

from .backends.base import ROOT_IDENTIFIER, StorageBackend
from .backends.memory import MemoryBackend
from .collection import Collection
from .exceptions import ConnectionError
from .serialization import GraphSerializer

logger = logging.getLogger(__name__)


class Database:
    """A document graph stored in a relational backend.

    The Database holds one root value. Any Collection inside the root (or
    inside an entry of another collection) is stored as its own set of
    rows, so it can be read and written entry by entry.

    Every Collection, GraphSerializer and QueryCompiler works through the
    Database it was created for; it owns the backend connection and the
    one-shot initialization.

    Example:
        from docgraph import connect

        db = connect("sqlite:///graph.db")

        await db.set({"guilds": db.collection(), "version": 1})

        root = await db.get()
        await root["guilds"].set("0", {"entitlements": db.collection(), "other": 4})
    """

    def __init__(self, backend: StorageBackend):
        """Create a Database over the given backend.

        Use connect() for convenient URL-based connection. The backend may
        already be connected; otherwise it is connected on first use.

        Args:
            backend: Storage backend instance
        """
        self._backend = backend
        self._serializer = GraphSerializer(self)
        self._initializing: Optional[asyncio.Future] = None

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def serializer(self) -> GraphSerializer:
        return self._serializer

    async def initialize(self) -> None:
        """Connect the backend and create its tables, exactly once.

        Safe to call concurrently: every caller awaits the same attempt.
        If that attempt fails, every later call raises the same error.
        """
        if self._initializing is None:
            self._initializing = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self._initializing)

    async def _initialize(self) -> None:
        try:
            await self._backend.connect()
        except ConnectionError as e:
            logger.info(f"Using the backend's existing connection: {e}")
        await self._backend.create_tables()
        logger.debug(f"Initialized {type(self._backend).__name__}")

    async def get(self, default: Any = None) -> Any:
        """Get the root value.

        Args:
            default: Value to return if the root was never set

        Returns:
            The decoded root value; collections inside it come back bound
        """
        await self.initialize()
        row = await self._backend.get_root()
        if row is None:
            return default
        return self._serializer.decode(row.payload, ROOT_IDENTIFIER)

    async def set(self, value: Any) -> None:
        """Replace the root value.

        Unbound collections inside value are bound under the root and
        their buffered entries flushed before the root row is written.
        """
        await self.initialize()
        payload, _ = await self._serializer.encode(value, None, ROOT_IDENTIFIER)
        await self._backend.put_root(payload)

    def collection(self) -> Collection:
        """Create a new, unbound collection for this database."""
        return Collection(self)

    async def close(self) -> None:
        """Close the backend and release resources."""
        await self._backend.close()
        self._initializing = None

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def connect(url: str) -> Database:
    """Create a Database for a URL.

    Supported URL schemes:
        - memory://          In-memory storage (testing)
        - sqlite:///path.db  SQLite file storage
        - sqlite:///:memory: SQLite in-memory
        - postgresql://...   PostgreSQL (future)

    The backend is opened lazily, on the first operation.

    Args:
        url: Connection URL

    Returns:
        Database instance

    Example:
        db = connect("sqlite:///graph.db")
        db = connect("memory://")
    """
    parsed = urlparse(url)
    scheme = parsed.scheme

    if scheme == "memory":
        return Database(MemoryBackend())

    elif scheme == "sqlite":
        from .backends.sqlite import SQLiteBackend

        # Handle sqlite:///path and sqlite:///:memory:
        path = parsed.path
        if path.startswith("/"):
            path = path[1:]  # Remove leading slash from file path

        return Database(SQLiteBackend(path=path if path else ":memory:"))

    elif scheme == "postgresql" or scheme == "postgres":
        raise NotImplementedError("PostgreSQL backend not yet implemented")

    else:
        raise ValueError(f"Unknown storage scheme: {scheme}")
