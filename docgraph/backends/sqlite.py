"""SQLite storage backend."""

import json
import sqlite3
from typing import List, Optional, Sequence

from ..exceptions import ConnectionError
from .base import (
    ROOT_IDENTIFIER,
    MembershipEntry,
    ObjectRow,
    SchemaTree,
    StorageBackend,
)

_OBJECT_COLUMNS = "o.identifier, o.parent_object_identifier, o.data"


class SQLiteBackend(StorageBackend):
    """SQLite storage backend.

    Stores objects in a SQLite database file. Zero configuration required.
    Good for development and single-user production scenarios.

    Statements run on the calling thread and commit immediately, so every
    coroutine completes its write before returning.

    Example:
        backend = SQLiteBackend(path="graph.db")
        db = Database(backend)

        # Or in-memory
        backend = SQLiteBackend(path=":memory:")
    """

    def __init__(self, path: str = ":memory:"):
        self._conn: Optional[sqlite3.Connection] = None
        self._path = path

    async def connect(self, path: Optional[str] = None, **kwargs) -> None:
        """Connect to SQLite database.

        Args:
            path: Database file path, or ":memory:" for in-memory database.
                Defaults to the path given to the constructor.

        Raises:
            ConnectionError: If a connection is already open
        """
        if self._conn is not None:
            raise ConnectionError(f"SQLite database {self._path} is already open")
        if path is not None:
            self._path = path
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    async def create_tables(self) -> None:
        """Create the object, descriptor and membership tables."""
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS _ad_objects (
                identifier INTEGER NOT NULL PRIMARY KEY,
                parent_object_identifier INTEGER,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS _ad_object_sequence (
                identifier INTEGER PRIMARY KEY AUTOINCREMENT
            );
            CREATE TABLE IF NOT EXISTS _ad_tables (
                identifier INTEGER PRIMARY KEY AUTOINCREMENT,
                sub_tables TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS _ad_table_refs (
                identifier INTEGER NOT NULL,
                key TEXT NOT NULL,
                object_identifier INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_table_refs_key
                ON _ad_table_refs(identifier, key);
            """
        )
        self._conn.commit()

    @staticmethod
    def _to_row(row: sqlite3.Row) -> ObjectRow:
        return ObjectRow(
            identifier=row["identifier"],
            parent_identifier=row["parent_object_identifier"],
            payload=row["data"],
        )

    async def get_root(self) -> Optional[ObjectRow]:
        cursor = self._conn.execute(
            f"SELECT {_OBJECT_COLUMNS} FROM _ad_objects o WHERE o.identifier = ?",
            (ROOT_IDENTIFIER,),
        )
        row = cursor.fetchone()
        return None if row is None else self._to_row(row)

    async def put_root(self, payload: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO _ad_objects VALUES (?, NULL, ?)",
            (ROOT_IDENTIFIER, payload),
        )
        self._conn.commit()

    async def allocate_object_identifier(self) -> int:
        cursor = self._conn.execute("INSERT INTO _ad_object_sequence DEFAULT VALUES")
        self._conn.commit()
        return cursor.lastrowid

    async def put_object(self, row: ObjectRow) -> None:
        self._conn.execute(
            "INSERT INTO _ad_objects VALUES (?, ?, ?)",
            (row.identifier, row.parent_identifier, row.payload),
        )
        self._conn.commit()

    async def create_collection(self, schema: SchemaTree = None) -> int:
        cursor = self._conn.execute(
            "INSERT INTO _ad_tables (sub_tables) VALUES (?)", (json.dumps(schema),)
        )
        self._conn.commit()
        return cursor.lastrowid

    async def get_collection_schema(self, identifier: int) -> Optional[SchemaTree]:
        cursor = self._conn.execute(
            "SELECT sub_tables FROM _ad_tables WHERE identifier = ?", (identifier,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["sub_tables"])

    async def put_collection_schema(self, identifier: int, schema: SchemaTree) -> None:
        self._conn.execute(
            "UPDATE _ad_tables SET sub_tables = ? WHERE identifier = ?",
            (json.dumps(schema), identifier),
        )
        self._conn.commit()

    async def add_member(self, entry: MembershipEntry) -> None:
        self._conn.execute(
            "INSERT INTO _ad_table_refs VALUES (?, ?, ?)",
            (entry.collection_identifier, entry.key, entry.object_identifier),
        )
        self._conn.commit()

    async def get_member(
        self, collection_identifier: int, key: str, parent_identifier: int
    ) -> Optional[ObjectRow]:
        cursor = self._conn.execute(
            f"""
            SELECT {_OBJECT_COLUMNS}
            FROM _ad_table_refs r
            INNER JOIN _ad_objects o ON o.identifier = r.object_identifier
            WHERE r.identifier = ? AND r.key = ? AND o.parent_object_identifier = ?
            ORDER BY o.identifier DESC
            LIMIT 1
            """,
            (collection_identifier, key, parent_identifier),
        )
        row = cursor.fetchone()
        return None if row is None else self._to_row(row)

    @staticmethod
    def _current_rows_sql(level: int, columns: str, owners_sql: str) -> str:
        """Select the current entries of one collection owned by owners_sql.

        Placeholders: the collection identifier, then those of owners_sql.
        """
        r, o, rm, om = f"r{level}", f"o{level}", f"rm{level}", f"om{level}"
        return f"""
            SELECT {columns}
            FROM _ad_table_refs {r}
            INNER JOIN _ad_objects {o} ON {o}.identifier = {r}.object_identifier
            WHERE {r}.identifier = ?
                AND {o}.parent_object_identifier IN ({owners_sql})
                AND {o}.identifier = (
                    SELECT MAX({om}.identifier)
                    FROM _ad_table_refs {rm}
                    INNER JOIN _ad_objects {om} ON {om}.identifier = {rm}.object_identifier
                    WHERE {rm}.identifier = {r}.identifier
                        AND {rm}.key = {r}.key
                        AND {om}.parent_object_identifier = {o}.parent_object_identifier
                )
            """

    async def list_members(
        self, tables: Sequence[int], parent_identifier: int
    ) -> List[ObjectRow]:
        if not tables:
            return []
        sql = "?"
        params: List[int] = [parent_identifier]
        last = len(tables) - 1
        for level, collection_identifier in enumerate(tables):
            columns = (
                f"o{level}.identifier, o{level}.parent_object_identifier, o{level}.data"
                if level == last
                else f"o{level}.identifier"
            )
            sql = self._current_rows_sql(level, columns, sql)
            params = [collection_identifier] + params
        cursor = self._conn.execute(f"{sql} ORDER BY o{last}.identifier", params)
        return [self._to_row(row) for row in cursor]

    async def count_members(self, collection_identifier: int, key: str) -> int:
        cursor = self._conn.execute(
            "SELECT COUNT(*) FROM _ad_table_refs WHERE identifier = ? AND key = ?",
            (collection_identifier, key),
        )
        return cursor.fetchone()[0]
