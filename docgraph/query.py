"""Lazy query paths over collections and their compilation to one bulk fetch.

A Query is an immutable description of a path through the entries of a
collection: plain field accesses, optionally ending in a continuation that
descends into a nested collection. Building a Query never touches the
backend. QueryCompiler resolves each continuation to the nested collection's
identifier using the recorded schema trees, then fetches every entry of the
final collection in one request and projects each down to the requested leaf.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from .backends.base import SchemaTree
from .exceptions import InvalidQueryError, NotBoundError, PathNotFound

if TYPE_CHECKING:
    from .core import Database

logger = logging.getLogger(__name__)

Segment = Union[str, "Query"]


class Query:
    """Immutable path description, optionally rooted at a collection.

    Example:
        # guilds -> each guild's entitlements -> name
        query = guilds.path().field("entitlements").nested(
            lambda entitlement: entitlement.field("name")
        )
    """

    __slots__ = ("_table", "_segments", "_parent")

    def __init__(
        self,
        table: Optional[int] = None,
        segments: Tuple[Segment, ...] = (),
        parent: Optional[int] = None,
    ):
        self._table = table
        self._segments = tuple(segments)
        self._parent = parent

    @property
    def table(self) -> Optional[int]:
        """Identifier of the collection the path starts from, if known."""
        return self._table

    @property
    def parent(self) -> Optional[int]:
        """Identifier of the object owning the starting collection, if known."""
        return self._parent

    @property
    def segments(self) -> Tuple[Segment, ...]:
        return self._segments

    @property
    def keys(self) -> Tuple[str, ...]:
        """The plain field keys of the path, without any continuation."""
        return tuple(s for s in self._segments if not isinstance(s, Query))

    @property
    def continuation(self) -> Optional["Query"]:
        """The nested query the path ends in, if any."""
        if self._segments and isinstance(self._segments[-1], Query):
            return self._segments[-1]
        return None

    def _check_open(self) -> None:
        if self.continuation is not None:
            raise InvalidQueryError(
                "A nested query ends the path; describe further fields inside it"
            )

    def field(self, key: Union[str, int]) -> "Query":
        """Descend into a field (or a list index) of the current value."""
        self._check_open()
        return Query(self._table, self._segments + (str(key),), self._parent)

    def __getitem__(self, key: Union[str, int]) -> "Query":
        return self.field(key)

    def nested(self, builder: Callable[["Query"], "Query"]) -> "Query":
        """Descend into the nested collection reached by the current path.

        Args:
            builder: Function receiving an unrooted Query for one entry of
                the nested collection and returning the path within it

        Returns:
            A new Query ending in the nested continuation
        """
        self._check_open()
        inner = builder(Query())
        if not isinstance(inner, Query):
            raise TypeError(f"Query builder must return a Query, got {type(inner).__name__}")
        return Query(self._table, self._segments + (inner,), self._parent)

    def rooted_at(self, table: int) -> "Query":
        """The same path, starting from the given collection."""
        return Query(table, self._segments)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Query):
            return NotImplemented
        return (
            self._table == other._table
            and self._segments == other._segments
            and self._parent == other._parent
        )

    def __hash__(self) -> int:
        return hash((self._table, self._segments, self._parent))

    def __repr__(self) -> str:
        return (
            f"Query(table={self._table}, segments={list(self._segments)!r}, "
            f"parent={self._parent})"
        )


def project(value: Any, keys: Tuple[str, ...]) -> Any:
    """Follow keys through a decoded value; None where the path runs out."""
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return None
    return value


class QueryCompiler:
    """Compile Query paths against stored schema trees and run them.

    Schema trees are fetched on demand, at most once per collection for the
    lifetime of the compiler.
    """

    def __init__(self, database: "Database"):
        self._database = database
        self._schemas: Dict[int, SchemaTree] = {}

    async def _schema(self, table: int) -> SchemaTree:
        if table not in self._schemas:
            self._schemas[table] = await self._database.backend.get_collection_schema(
                table
            )
        return self._schemas[table]

    async def compile(self, query: Query) -> Tuple[Tuple[str, ...], int]:
        """Resolve a path to its target collection.

        Args:
            query: A Query rooted at a bound collection

        Returns:
            (key sequence to project each entry through, target collection identifier)

        Raises:
            NotBoundError: If the query is not rooted at a collection
            PathNotFound: If a continuation's key-path is not a nested
                collection in the schema
        """
        keys, tables = await self._resolve(query)
        return keys, tables[-1]

    async def _resolve(self, query: Query) -> Tuple[Tuple[str, ...], Tuple[int, ...]]:
        if not isinstance(query, Query):
            raise TypeError(f"Expected a Query, got {type(query).__name__}")
        await self._database.initialize()
        return await self._compile(query)

    async def _compile(self, query: Query) -> Tuple[Tuple[str, ...], Tuple[int, ...]]:
        table = query.table
        if table is None:
            raise NotBoundError("Query is not rooted at a bound collection")

        continuation = query.continuation
        if continuation is None:
            return query.keys, (table,)

        nested_table = continuation.table
        if nested_table is None:
            node = await self._schema(table)
            for key in query.keys:
                if not isinstance(node, dict) or key not in node:
                    raise PathNotFound(table, query.keys)
                node = node[key]
            if not isinstance(node, int):
                raise PathNotFound(table, query.keys)
            nested_table = node

        logger.debug(
            f"Query path {'/'.join(query.keys)} in collection {table} "
            f"resolves to collection {nested_table}"
        )
        keys, tables = await self._compile(continuation.rooted_at(nested_table))
        return keys, (table,) + tables

    async def execute(self, query: Query) -> List[Any]:
        """Compile a query, fetch its target collection and project every entry.

        Only entries reachable from the query's owner through current
        entries are returned; rows under overwritten entries are skipped.

        Returns:
            One projected value per entry, ordered by object identifier

        Raises:
            NotBoundError: If the query has no owning object
        """
        keys, tables = await self._resolve(query)
        if query.parent is None:
            raise NotBoundError("Query has no owning object to scope its entries to")
        rows = await self._database.backend.list_members(tables, query.parent)
        serializer = self._database.serializer
        return [
            project(serializer.decode(row.payload, row.identifier), keys)
            for row in rows
        ]
