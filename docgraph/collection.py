"""Collection handles: key/value maps whose entries are stored as separate rows."""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple, Union

from .backends.base import MembershipEntry, ObjectRow, SchemaTree
from .exceptions import ConstructorMisuse, NotBoundError, SchemaConflict
from .query import Query, QueryCompiler

if TYPE_CHECKING:
    from .core import Database

logger = logging.getLogger(__name__)

# Key of the reference marker that stands in for a bound collection
# inside its owner's payload.
MARKER = "?_table"


@dataclass
class Unbound:
    """Not persisted yet; writes are buffered in insertion order."""

    entries: List[Tuple[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Bound:
    """Persisted as collection `identifier`, embedded in object `parent_identifier`."""

    identifier: int
    parent_identifier: int


CollectionState = Union[Unbound, Bound]


def _check_key(key: Any) -> None:
    if not isinstance(key, str):
        raise TypeError(f"Collection keys must be strings, got {type(key).__name__}")


class Collection:
    """An addressable key/value map embedded inside another object.

    Each entry is stored as its own object row, so entries are read and
    written one at a time instead of rewriting the enclosing object.

    A new Collection starts unbound: set() buffers entries in memory and
    get() reads them back from the buffer. The first time the collection
    is written as part of another value (a root set, or a set on a bound
    collection), it is bound: it gets a persisted identifier and the
    buffered entries are flushed in order. From then on every operation
    goes straight to the backend.

    Example:
        db = connect("memory://")
        await db.set({"guilds": db.collection()})

        root = await db.get()
        guilds = root["guilds"]              # bound Collection
        await guilds.set("0", {"entitlements": db.collection(), "other": 4})

        guild = await guilds.get("0")
        await guild["entitlements"].set("0", {"name": "Guild 0's entitlement."})

        names = await guilds.query(
            lambda guild: guild.field("entitlements").nested(
                lambda entitlement: entitlement.field("name")
            )
        )
    """

    def __init__(
        self,
        database: "Database",
        identifier: Optional[int] = None,
        parent_identifier: Optional[int] = None,
    ):
        """Create a collection handle.

        Args:
            database: The Database the collection lives in
            identifier: Persisted collection identifier (bound handles only)
            parent_identifier: Identifier of the object embedding the
                collection (bound handles only)

        Raises:
            ConstructorMisuse: If only one of identifier/parent_identifier is given
        """
        self._database = database
        self._state: CollectionState
        if identifier is not None and parent_identifier is not None:
            self._state = Bound(identifier, parent_identifier)
        elif identifier is None and parent_identifier is None:
            self._state = Unbound()
        else:
            raise ConstructorMisuse(identifier, parent_identifier)

    @property
    def database(self) -> "Database":
        return self._database

    @property
    def state(self) -> CollectionState:
        return self._state

    @property
    def is_bound(self) -> bool:
        return isinstance(self._state, Bound)

    @property
    def identifier(self) -> Optional[int]:
        """Persisted identifier, or None while unbound."""
        if isinstance(self._state, Bound):
            return self._state.identifier
        return None

    @property
    def parent_identifier(self) -> Optional[int]:
        """Identifier of the object embedding this collection, or None while unbound."""
        if isinstance(self._state, Bound):
            return self._state.parent_identifier
        return None

    async def get(self, key: str, default: Any = None) -> Any:
        """Get the value stored under key.

        Args:
            key: Entry key
            default: Value to return if the key is absent

        Returns:
            The decoded value (nested collections come back bound), or default
        """
        _check_key(key)
        await self._database.initialize()

        state = self._state
        if isinstance(state, Bound):
            row = await self._database.backend.get_member(
                state.identifier, key, state.parent_identifier
            )
            if row is None:
                return default
            return self._database.serializer.decode(row.payload, row.identifier)

        for buffered_key, value in state.entries:
            if buffered_key == key:
                return value
        return default

    async def set(self, key: str, value: Any) -> None:
        """Store value under key.

        Bound collections write a new object row and membership entry and
        persist the updated schema tree. Unbound collections buffer the
        entry until they are bound.

        Raises:
            SchemaConflict: If value disagrees with the schema recorded for
                this collection; nothing is persisted for the entry and the
                stored schema is left untouched
            SerializationError: If value is not JSON-compatible
        """
        _check_key(key)
        await self._database.initialize()

        state = self._state
        if isinstance(state, Unbound):
            state.entries.append((key, value))
            return

        backend = self._database.backend
        object_identifier = await backend.allocate_object_identifier()
        schema = await self.schema()
        payload, schema = await self._database.serializer.encode(
            value, schema, object_identifier
        )

        await backend.put_object(
            ObjectRow(object_identifier, state.parent_identifier, payload)
        )
        await backend.add_member(
            MembershipEntry(state.identifier, key, object_identifier)
        )
        await backend.put_collection_schema(state.identifier, schema)
        logger.debug(
            f"Collection {state.identifier}: set {key!r} -> object {object_identifier}"
        )

    async def bind(
        self, parent_identifier: int, identifier: Optional[int] = None
    ) -> int:
        """Attach the collection to the object that embeds it.

        An unbound collection gets a persisted identifier (a new one unless
        identifier is given) and replays its buffered entries, in order,
        through set(). A bound collection keeps its identifier and is
        re-scoped to parent_identifier.

        Args:
            parent_identifier: Identifier of the object embedding the collection
            identifier: Collection identifier to bind to, if already known

        Returns:
            The bound collection identifier

        Raises:
            SchemaConflict: If the collection is bound under another identifier
        """
        state = self._state
        if isinstance(state, Bound):
            if identifier is not None and identifier != state.identifier:
                raise SchemaConflict(
                    (), f"collection {state.identifier}", f"collection {identifier}"
                )
            self._state = Bound(state.identifier, parent_identifier)
            return state.identifier

        await self._database.initialize()
        if identifier is None:
            identifier = await self._database.backend.create_collection()
        self._state = Bound(identifier, parent_identifier)
        logger.debug(
            f"Bound collection {identifier} under object {parent_identifier}, "
            f"flushing {len(state.entries)} buffered entries"
        )

        for key, value in state.entries:
            await self.set(key, value)
        return identifier

    async def schema(self) -> SchemaTree:
        """Fetch the current schema tree of this collection.

        Returns:
            The schema tree (None if nothing was recorded yet)

        Raises:
            NotBoundError: If the collection is unbound
        """
        if not isinstance(self._state, Bound):
            raise NotBoundError("An unbound collection has no stored schema")
        await self._database.initialize()
        return await self._database.backend.get_collection_schema(
            self._state.identifier
        )

    def to_reference(self) -> dict:
        """The marker embedded in the owner's payload in place of this collection.

        Raises:
            NotBoundError: If the collection is unbound
        """
        if not isinstance(self._state, Bound):
            raise NotBoundError(
                "Collection must be bound before it can be referenced; "
                "store it inside another value instead"
            )
        return {MARKER: self._state.identifier}

    def path(self) -> Query:
        """An empty query path rooted at this collection."""
        return Query(self.identifier, parent=self.parent_identifier)

    async def query(self, builder: Callable[[Query], Query]) -> List[Any]:
        """Run a query over every entry of this collection.

        Args:
            builder: Function receiving a Query for one entry and returning
                the path to project

        Returns:
            One projected value per matching row

        Raises:
            NotBoundError: If the collection is unbound
            PathNotFound: If a nested path is not recorded in the schema

        Example:
            names = await guilds.query(
                lambda guild: guild.field("entitlements").nested(
                    lambda entitlement: entitlement.field("name")
                )
            )
        """
        query = builder(self.path())
        return await QueryCompiler(self._database).execute(query)

    def __repr__(self) -> str:
        state = self._state
        if isinstance(state, Bound):
            return (
                f"Collection(identifier={state.identifier}, "
                f"parent_identifier={state.parent_identifier})"
            )
        return f"Collection(unbound, {len(state.entries)} buffered)"
