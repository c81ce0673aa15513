"""Exceptions for the docgraph package."""

from typing import Any, Sequence


def _format_path(path: Sequence[str]) -> str:
    return "/" + "/".join(path) if path else "/"


class StoreError(Exception):
    """Base exception for all store errors."""

    pass


class ConnectionError(StoreError):
    """Failed to connect to storage backend, or it is already connected."""

    pass


class ConstructorMisuse(StoreError, TypeError):
    """A collection handle was given only one of identifier/parent_identifier."""

    def __init__(self, identifier: Any, parent_identifier: Any):
        self.identifier = identifier
        self.parent_identifier = parent_identifier
        super().__init__(
            "Collection needs both identifier and parent_identifier, or neither "
            f"(got identifier={identifier!r}, parent_identifier={parent_identifier!r})"
        )


class NotBoundError(StoreError):
    """Operation needs a persisted identifier but the collection is unbound."""

    pass


class SchemaConflict(StoreError, TypeError):
    """A value's shape disagrees with the schema recorded for its key-path."""

    def __init__(self, path: Sequence[str], expected: str, actual: str):
        self.path = tuple(path)
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Key-path {_format_path(self.path)} holds {expected}, cannot write {actual}"
        )


class PathNotFound(StoreError, KeyError):
    """A query path does not resolve to a nested collection in the schema."""

    def __init__(self, table: Any, path: Sequence[str]):
        self.table = table
        self.path = tuple(path)
        super().__init__(
            f"No nested collection at {_format_path(self.path)} in collection {table}"
        )


class InvalidQueryError(StoreError, ValueError):
    """A query path was built in a way that cannot be compiled."""

    pass


class SerializationError(StoreError):
    """Failed to serialize or deserialize a value."""

    pass
