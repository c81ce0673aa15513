"""In-memory storage backend for testing."""

import copy
import itertools
from typing import Dict, List, Optional, Sequence, Set

from ..exceptions import ConnectionError
from .base import (
    ROOT_IDENTIFIER,
    MembershipEntry,
    ObjectRow,
    SchemaTree,
    StorageBackend,
)


class MemoryBackend(StorageBackend):
    """In-memory storage backend.

    Useful for testing and temporary storage. Data is lost when the
    backend is closed or the process ends.

    Example:
        backend = MemoryBackend()
        db = Database(backend)
        await db.set({"guilds": db.collection()})
    """

    def __init__(self):
        self._objects: Dict[int, ObjectRow] = {}
        self._collections: Dict[int, SchemaTree] = {}
        self._members: List[MembershipEntry] = []
        self._object_ids = itertools.count(ROOT_IDENTIFIER + 1)
        self._collection_ids = itertools.count(1)
        self._connected = False

    async def connect(self, **kwargs) -> None:
        """Mark the in-memory store as open."""
        if self._connected:
            raise ConnectionError("MemoryBackend is already connected")
        self._connected = True

    async def close(self) -> None:
        """Clear the in-memory store."""
        self._objects.clear()
        self._collections.clear()
        self._members.clear()
        self._connected = False

    async def create_tables(self) -> None:
        """Nothing to create; the relations are plain containers."""
        pass

    async def get_root(self) -> Optional[ObjectRow]:
        return self._objects.get(ROOT_IDENTIFIER)

    async def put_root(self, payload: str) -> None:
        self._objects[ROOT_IDENTIFIER] = ObjectRow(ROOT_IDENTIFIER, None, payload)

    async def allocate_object_identifier(self) -> int:
        return next(self._object_ids)

    async def put_object(self, row: ObjectRow) -> None:
        self._objects[row.identifier] = row

    async def create_collection(self, schema: SchemaTree = None) -> int:
        identifier = next(self._collection_ids)
        self._collections[identifier] = copy.deepcopy(schema)
        return identifier

    async def get_collection_schema(self, identifier: int) -> Optional[SchemaTree]:
        # Copy so callers never mutate the stored tree in place
        return copy.deepcopy(self._collections.get(identifier))

    async def put_collection_schema(self, identifier: int, schema: SchemaTree) -> None:
        self._collections[identifier] = copy.deepcopy(schema)

    async def add_member(self, entry: MembershipEntry) -> None:
        self._members.append(entry)

    async def get_member(
        self, collection_identifier: int, key: str, parent_identifier: int
    ) -> Optional[ObjectRow]:
        best: Optional[ObjectRow] = None
        for entry in self._members:
            if entry.collection_identifier != collection_identifier or entry.key != key:
                continue
            row = self._objects.get(entry.object_identifier)
            if row is None or row.parent_identifier != parent_identifier:
                continue
            if best is None or row.identifier > best.identifier:
                best = row
        return best

    def _current(
        self, collection_identifier: int, parents: Set[int]
    ) -> List[ObjectRow]:
        newest: Dict[tuple, ObjectRow] = {}
        for entry in self._members:
            if entry.collection_identifier != collection_identifier:
                continue
            row = self._objects.get(entry.object_identifier)
            if row is None or row.parent_identifier not in parents:
                continue
            slot = (entry.key, row.parent_identifier)
            current = newest.get(slot)
            if current is None or row.identifier > current.identifier:
                newest[slot] = row
        return sorted(newest.values(), key=lambda row: row.identifier)

    async def list_members(
        self, tables: Sequence[int], parent_identifier: int
    ) -> List[ObjectRow]:
        rows: List[ObjectRow] = []
        parents = {parent_identifier}
        for collection_identifier in tables:
            rows = self._current(collection_identifier, parents)
            parents = {row.identifier for row in rows}
        return rows

    async def count_members(self, collection_identifier: int, key: str) -> int:
        return sum(
            1
            for entry in self._members
            if entry.collection_identifier == collection_identifier and entry.key == key
        )
