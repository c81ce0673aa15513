"""Graph serialization for docgraph.

Values are JSON-compatible graphs (dicts, lists, str, int, float, bool, None)
that may contain Collection handles anywhere. Encoding binds every collection
it meets and replaces it with a reference marker; decoding turns markers back
into bound Collection handles scoped to the object that contained them.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Any, List, Optional, Set, Tuple

from .backends.base import SchemaTree
from .collection import MARKER, Collection
from .exceptions import SchemaConflict, SerializationError

if TYPE_CHECKING:
    from .core import Database


# User keys starting with "?" get one more "?", so a dict whose only key is
# exactly MARKER is always a reference.
def _escape(key: str) -> str:
    return "?" + key if key.startswith("?") else key


def _unescape(key: str) -> str:
    return key[1:] if key.startswith("?") else key


def _children(value: Any, path: Tuple[str, ...]) -> Optional[List[Tuple[str, Any]]]:
    """(key, child) pairs of a composite value, or None for a scalar."""
    if isinstance(value, dict):
        for key in value:
            if not isinstance(key, str):
                raise SerializationError(
                    f"Keys must be strings, got {type(key).__name__} at "
                    f"{'/' + '/'.join(path)}"
                )
        return list(value.items())
    if isinstance(value, (list, tuple)):
        return [(str(index), item) for index, item in enumerate(value)]
    if value is None or isinstance(value, (str, int, float, bool)):
        return None
    raise SerializationError(f"Cannot serialize type: {type(value)}")


class GraphSerializer:
    """Encode and decode value graphs against a collection schema tree.

    The schema tree mirrors the shape of the values written to one
    collection: a dict at every composite key-path and the nested
    collection's identifier wherever a Collection was written. Scalars
    leave no trace in it.

    Example:
        serializer = GraphSerializer(db)

        payload, schema = await serializer.encode(
            {"entitlements": db.collection(), "other": 4}, None, owner=17
        )
        # payload == '{"entitlements": {"?_table": 3}, "other": 4}'
        # schema == {"entitlements": 3}

        value = serializer.decode(payload, owner=17)
        # value["entitlements"] is a bound Collection(3, parent 17)
    """

    def __init__(self, database: "Database"):
        self._database = database

    async def encode(
        self, value: Any, schema: SchemaTree, owner: int
    ) -> Tuple[str, SchemaTree]:
        """Serialize a value graph, binding nested collections.

        The whole graph is checked against the schema tree before anything
        is bound, so a conflict leaves every collection in it untouched.
        The schema tree passed in is updated in place where it is a dict;
        callers that must keep the old tree on failure pass a copy.

        Args:
            value: The value graph to encode
            schema: Current schema tree for the key-path of value
            owner: Identifier of the object whose payload this becomes

        Returns:
            (JSON payload, updated schema tree)

        Raises:
            SchemaConflict: If a collection and plain data meet at one key-path
            SerializationError: If the graph holds a non-JSON value
        """
        self.check(value, schema)
        node, schema = await self._prepare(value, schema, owner)
        return json.dumps(node), schema

    def check(self, value: Any, schema: SchemaTree) -> None:
        """Validate a value graph against a schema tree without any I/O.

        Buffered entries of unbound collections are checked for
        JSON-compatibility too, since binding flushes them.

        Raises:
            SchemaConflict: If a collection and plain data meet at one key-path
            SerializationError: If the graph holds a non-JSON value
        """
        self._check(value, schema, (), set())

    def _check(
        self, value: Any, schema: SchemaTree, path: Tuple[str, ...], seen: Set[int]
    ) -> None:
        if isinstance(value, Collection):
            if isinstance(schema, dict):
                raise SchemaConflict(path, "data", "a collection")
            if value.is_bound:
                if isinstance(schema, int) and schema != value.identifier:
                    raise SchemaConflict(
                        path, f"collection {schema}", f"collection {value.identifier}"
                    )
            elif id(value) not in seen:
                seen.add(id(value))
                for key, item in value.state.entries:
                    self._check(item, None, path + (key,), seen)
            return

        if isinstance(schema, int):
            raise SchemaConflict(path, f"collection {schema}", "data")

        children = _children(value, path)
        if children is None:
            return
        tree = schema if isinstance(schema, dict) else {}
        for key, child in children:
            self._check(child, tree.get(key), path + (key,), seen)

    async def _prepare(
        self, value: Any, schema: SchemaTree, owner: int
    ) -> Tuple[Any, SchemaTree]:
        if isinstance(value, Collection):
            recorded = schema if isinstance(schema, int) else None
            identifier = await value.bind(owner, recorded)
            return value.to_reference(), identifier

        children = _children(value, ())
        if children is None:
            return value, schema

        tree = schema if isinstance(schema, dict) else {}
        tasks = [
            asyncio.ensure_future(self._prepare(child, tree.get(key), owner))
            for key, child in children
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        for (key, _), (_, child_schema) in zip(children, results):
            if child_schema is not None:
                tree[key] = child_schema

        if isinstance(value, dict):
            node = {_escape(key): child for (key, _), (child, _) in zip(children, results)}
        else:
            node = [child for child, _ in results]
        return node, tree

    def decode(self, payload: str, owner: int) -> Any:
        """Deserialize a payload, rehydrating collection references.

        Args:
            payload: JSON payload produced by encode()
            owner: Identifier of the object row the payload was read from

        Returns:
            The value graph; every reference marker becomes a bound
            Collection whose parent_identifier is owner

        Raises:
            SerializationError: If the payload is not valid JSON
        """

        def hook(obj: dict) -> Any:
            if len(obj) == 1 and MARKER in obj:
                return Collection(self._database, obj[MARKER], owner)
            return {_unescape(key): item for key, item in obj.items()}

        try:
            return json.loads(payload, object_hook=hook)
        except ValueError as e:
            raise SerializationError(f"Failed to decode object {owner}: {e}") from e
