"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

ROOT_IDENTIFIER = 0

# dict for composite key-paths, int for a nested collection identifier
SchemaTree = Any


@dataclass
class ObjectRow:
    """One serialized object (a collection entry, or the root)."""

    identifier: int
    parent_identifier: Optional[int]
    payload: str  # JSON text


@dataclass
class MembershipEntry:
    """Maps a key of a collection to the object row holding its value."""

    collection_identifier: int
    key: str
    object_identifier: int


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    A backend owns three relations: the object store, the collection
    descriptor store and the membership store. Backends only move rows;
    the Database, Collection and GraphSerializer classes decide what the
    rows mean.

    Identifiers are assigned by the backend. Object identifiers come from a
    monotonically increasing generator starting at 1, so they are never
    reused and ROOT_IDENTIFIER (0) is never handed out.
    """

    @abstractmethod
    async def connect(self, **kwargs) -> None:
        """Establish connection to storage.

        Raises:
            ConnectionError: If the backend is already connected or the
                connection cannot be opened
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connection and release resources."""
        pass

    @abstractmethod
    async def create_tables(self) -> None:
        """Create the backing relations if they don't exist (idempotent)."""
        pass

    # Root

    @abstractmethod
    async def get_root(self) -> Optional[ObjectRow]:
        """Fetch the root row, or None if the root was never set."""
        pass

    @abstractmethod
    async def put_root(self, payload: str) -> None:
        """Insert or replace the root row."""
        pass

    # Object store

    @abstractmethod
    async def allocate_object_identifier(self) -> int:
        """Allocate a fresh, globally unique object identifier."""
        pass

    @abstractmethod
    async def put_object(self, row: ObjectRow) -> None:
        """Insert an object row.

        Args:
            row: Row with an identifier from allocate_object_identifier()
        """
        pass

    # Collection descriptor store

    @abstractmethod
    async def create_collection(self, schema: SchemaTree = None) -> int:
        """Create a collection descriptor.

        Args:
            schema: Initial schema tree

        Returns:
            The new collection identifier
        """
        pass

    @abstractmethod
    async def get_collection_schema(self, identifier: int) -> Optional[SchemaTree]:
        """Fetch a collection's schema tree.

        Returns:
            The schema tree, or None if unknown or never written
        """
        pass

    @abstractmethod
    async def put_collection_schema(self, identifier: int, schema: SchemaTree) -> None:
        """Replace a collection's schema tree."""
        pass

    # Membership store

    @abstractmethod
    async def add_member(self, entry: MembershipEntry) -> None:
        """Append a membership entry.

        Entries are never replaced; readers resolve a key to its newest entry.
        """
        pass

    @abstractmethod
    async def get_member(
        self, collection_identifier: int, key: str, parent_identifier: int
    ) -> Optional[ObjectRow]:
        """Resolve a key of a collection to its object row.

        Only objects whose parent_identifier matches are considered; among
        those the newest entry (highest object identifier) wins.

        Args:
            collection_identifier: Collection to look in
            key: Entry key
            parent_identifier: Identifier of the object owning the collection

        Returns:
            The ObjectRow, or None if the key is absent
        """
        pass

    @abstractmethod
    async def list_members(
        self, tables: Sequence[int], parent_identifier: int
    ) -> List[ObjectRow]:
        """Fetch every reachable object row of a collection in one request.

        tables is a chain of collection identifiers: tables[0] holds entries
        owned by parent_identifier, and the entries of each following table
        are owned by the current entries of the one before it. Only the
        newest entry per (key, parent_identifier) is current, so rows under
        overwritten owners are left out.

        Args:
            tables: Collection identifiers from the starting collection to
                the target collection
            parent_identifier: Identifier of the object owning tables[0]

        Returns:
            The current rows of tables[-1], ordered by object identifier
        """
        pass

    @abstractmethod
    async def count_members(self, collection_identifier: int, key: str) -> int:
        """Count raw membership entries recorded for a key."""
        pass
