"""Tests for the docgraph storage backends."""

import asyncio
import os
import tempfile

import pytest

from docgraph import ConnectionError, MembershipEntry, ObjectRow, SQLiteBackend
from docgraph.backends import ROOT_IDENTIFIER


async def _open(backend):
    await backend.connect()
    await backend.create_tables()
    return backend


class TestBackendContract:
    """Behavior shared by every backend."""

    def test_connect_twice_raises(self, make_backend):
        """A second connect on an open backend raises ConnectionError."""

        async def run_test():
            backend = await _open(make_backend())
            with pytest.raises(ConnectionError):
                await backend.connect()
            await backend.close()

        asyncio.run(run_test())

    def test_create_tables_is_idempotent(self, make_backend):
        """Creating tables twice keeps existing rows."""

        async def run_test():
            backend = await _open(make_backend())
            await backend.put_root('{"x": 1}')
            await backend.create_tables()
            row = await backend.get_root()
            await backend.close()
            return row

        row = asyncio.run(run_test())
        assert row.identifier == ROOT_IDENTIFIER
        assert row.payload == '{"x": 1}'

    def test_root_absent_then_replaced(self, make_backend):
        """The root row is missing until put, then upserted in place."""

        async def run_test():
            backend = await _open(make_backend())
            missing = await backend.get_root()
            await backend.put_root("1")
            await backend.put_root("2")
            row = await backend.get_root()
            await backend.close()
            return missing, row

        missing, row = asyncio.run(run_test())
        assert missing is None
        assert row.payload == "2"
        assert row.parent_identifier is None

    def test_object_identifiers_increase(self, make_backend):
        """Object identifiers are unique, increasing and never the root's."""

        async def run_test():
            backend = await _open(make_backend())
            ids = [await backend.allocate_object_identifier() for _ in range(5)]
            await backend.close()
            return ids

        ids = asyncio.run(run_test())
        assert ids == sorted(ids)
        assert len(set(ids)) == 5
        assert ROOT_IDENTIFIER not in ids

    def test_collection_schema(self, make_backend):
        """Collection descriptors store and replace their schema tree."""

        async def run_test():
            backend = await _open(make_backend())
            first = await backend.create_collection()
            second = await backend.create_collection({"a": {}})
            empty = await backend.get_collection_schema(first)
            await backend.put_collection_schema(first, {"entitlements": second})
            updated = await backend.get_collection_schema(first)
            unknown = await backend.get_collection_schema(9999)
            initial = await backend.get_collection_schema(second)
            await backend.close()
            return first, second, empty, updated, unknown, initial

        first, second, empty, updated, unknown, initial = asyncio.run(run_test())
        assert first != second
        assert empty is None
        assert updated == {"entitlements": second}
        assert unknown is None
        assert initial == {"a": {}}

    def test_get_member_filters_by_parent(self, make_backend):
        """Membership lookups only see objects owned by the given parent."""

        async def run_test():
            backend = await _open(make_backend())
            table = await backend.create_collection()
            for parent, payload in ((10, '"ten"'), (20, '"twenty"')):
                identifier = await backend.allocate_object_identifier()
                await backend.put_object(ObjectRow(identifier, parent, payload))
                await backend.add_member(MembershipEntry(table, "k", identifier))

            results = (
                await backend.get_member(table, "k", 10),
                await backend.get_member(table, "k", 20),
                await backend.get_member(table, "k", 30),
                await backend.get_member(table, "other", 10),
            )
            await backend.close()
            return results

        ten, twenty, foreign, absent = asyncio.run(run_test())
        assert ten.payload == '"ten"'
        assert twenty.payload == '"twenty"'
        assert foreign is None
        assert absent is None

    def test_newest_entry_wins(self, make_backend):
        """Repeated entries for a key resolve to the newest object."""

        async def run_test():
            backend = await _open(make_backend())
            table = await backend.create_collection()
            for payload in ("1", "2", "3"):
                identifier = await backend.allocate_object_identifier()
                await backend.put_object(ObjectRow(identifier, 0, payload))
                await backend.add_member(MembershipEntry(table, "k", identifier))

            row = await backend.get_member(table, "k", 0)
            count = await backend.count_members(table, "k")
            await backend.close()
            return row, count

        row, count = asyncio.run(run_test())
        assert row.payload == "3"
        assert count == 3

    def test_list_members(self, make_backend):
        """Listing returns the newest object per key under one parent, in id order."""

        async def run_test():
            backend = await _open(make_backend())
            table = await backend.create_collection()
            other = await backend.create_collection()
            writes = [
                (table, "a", 1, '"a1-old"'),
                (table, "b", 1, '"b1"'),
                (table, "a", 2, '"a2"'),
                (table, "a", 1, '"a1-new"'),
                (other, "a", 1, '"elsewhere"'),
            ]
            for collection, key, parent, payload in writes:
                identifier = await backend.allocate_object_identifier()
                await backend.put_object(ObjectRow(identifier, parent, payload))
                await backend.add_member(MembershipEntry(collection, key, identifier))

            first = await backend.list_members([table], 1)
            second = await backend.list_members([table], 2)
            await backend.close()
            return first, second

        first, second = asyncio.run(run_test())
        assert [row.payload for row in first] == ['"b1"', '"a1-new"']
        assert [row.identifier for row in first] == sorted(row.identifier for row in first)
        assert [row.payload for row in second] == ['"a2"']

    def test_list_members_follows_current_owners(self, make_backend):
        """Rows owned by an overwritten entry are not reachable."""

        async def run_test():
            backend = await _open(make_backend())
            outer = await backend.create_collection()
            inner = await backend.create_collection()

            async def write(collection, key, parent, payload):
                identifier = await backend.allocate_object_identifier()
                await backend.put_object(ObjectRow(identifier, parent, payload))
                await backend.add_member(MembershipEntry(collection, key, identifier))
                return identifier

            old_guild = await write(outer, "g", ROOT_IDENTIFIER, '"g-old"')
            await write(inner, "e", old_guild, '"under-old"')
            new_guild = await write(outer, "g", ROOT_IDENTIFIER, '"g-new"')
            await write(inner, "e", new_guild, '"under-new"')
            other_guild = await write(outer, "h", ROOT_IDENTIFIER, '"h"')
            await write(inner, "e", other_guild, '"under-h"')

            guilds = await backend.list_members([outer], ROOT_IDENTIFIER)
            nested = await backend.list_members([outer, inner], ROOT_IDENTIFIER)
            scoped = await backend.list_members([inner], other_guild)
            await backend.close()
            return guilds, nested, scoped

        guilds, nested, scoped = asyncio.run(run_test())
        assert [row.payload for row in guilds] == ['"g-new"', '"h"']
        assert [row.payload for row in nested] == ['"under-new"', '"under-h"']
        assert [row.payload for row in scoped] == ['"under-h"']


class TestSQLiteBackend:
    """Tests specific to SQLiteBackend."""

    def test_persistence_to_file(self):
        """Data persists to file."""
        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            db_path = f.name

        async def run_test():
            backend1 = SQLiteBackend(path=db_path)
            await _open(backend1)
            table = await backend1.create_collection({"x": {}})
            await backend1.put_root('{"x": 123}')
            await backend1.close()

            backend2 = SQLiteBackend()
            await backend2.connect(path=db_path)
            await backend2.create_tables()
            root = await backend2.get_root()
            schema = await backend2.get_collection_schema(table)
            next_table = await backend2.create_collection()
            await backend2.close()
            return root, schema, table, next_table

        try:
            root, schema, table, next_table = asyncio.run(run_test())
            assert root.payload == '{"x": 123}'
            assert schema == {"x": {}}
            assert next_table > table
        finally:
            os.unlink(db_path)
