"""Tests for Database: root access, initialization and connect()."""

import asyncio
import os
import tempfile

import pytest

from docgraph import Collection, Database, MemoryBackend, SQLiteBackend, connect


class CountingBackend(MemoryBackend):
    """MemoryBackend that counts connection and table creation attempts."""

    def __init__(self):
        super().__init__()
        self.connects = 0
        self.creates = 0

    async def connect(self, **kwargs):
        self.connects += 1
        await asyncio.sleep(0)
        await super().connect(**kwargs)

    async def create_tables(self):
        self.creates += 1
        await asyncio.sleep(0)


class TestInitialize:
    """Tests for the one-shot initialization."""

    def test_concurrent_initialize_runs_once(self):
        """Overlapping callers share a single initialization."""
        backend = CountingBackend()
        db = Database(backend)

        async def run_test():
            await asyncio.gather(*(db.initialize() for _ in range(5)))
            await db.set({"a": 1})
            await db.get()

        asyncio.run(run_test())
        assert backend.connects == 1
        assert backend.creates == 1

    def test_already_connected_backend(self, make_backend):
        """A backend connected by the caller is used as is."""

        async def run_test():
            backend = make_backend()
            await backend.connect()
            db = Database(backend)
            await db.set({"x": 1})
            return await db.get()

        assert asyncio.run(run_test()) == {"x": 1}


class TestRoot:
    """Tests for reading and writing the root value."""

    def test_get_before_set(self, db):
        """A missing root is not an error."""

        async def run_test():
            return await db.get(), await db.get(default={})

        assert asyncio.run(run_test()) == (None, {})

    @pytest.mark.parametrize(
        "value",
        [
            {"guilds": {}, "count": 3, "ratio": 0.25, "ok": True, "none": None},
            [1, "two", [3.0], {"four": 4}],
            "just a string",
            42,
            {"unicode": "Gilde üß \U0001f600", "?q": {"??": "x"}},
        ],
    )
    def test_round_trip(self, db, value):
        """Graphs without collections read back deep-equal."""

        async def run_test():
            await db.set(value)
            return await db.get()

        assert asyncio.run(run_test()) == value

    def test_set_replaces_root(self, db):
        async def run_test():
            await db.set({"a": 1})
            await db.set({"b": 2})
            return await db.get()

        assert asyncio.run(run_test()) == {"b": 2}

    def test_root_keeps_collection_contents(self, db):
        """Re-writing the root with a bound collection keeps its entries."""

        async def run_test():
            await db.set({"guilds": db.collection(), "version": 1})
            root = await db.get()
            await root["guilds"].set("0", {"other": 4})

            root["version"] = 2
            await db.set(root)
            reloaded = await db.get()
            return reloaded, await reloaded["guilds"].get("0")

        root, guild = asyncio.run(run_test())
        assert root["version"] == 2
        assert isinstance(root["guilds"], Collection)
        assert guild == {"other": 4}

    def test_context_manager(self):
        backend = MemoryBackend()

        async def run_test():
            async with Database(backend) as db:
                await db.set([1, 2])
                return await db.get()

        assert asyncio.run(run_test()) == [1, 2]
        assert backend._connected is False


class TestConnect:
    """Tests for connect()."""

    def test_memory_url(self):
        db = connect("memory://")
        assert isinstance(db.backend, MemoryBackend)

    def test_sqlite_memory_url(self):
        db = connect("sqlite:///:memory:")
        assert isinstance(db.backend, SQLiteBackend)

        async def run_test():
            await db.set({"x": 1})
            value = await db.get()
            await db.close()
            return value

        assert asyncio.run(run_test()) == {"x": 1}

    def test_sqlite_file_url(self):
        """Collections survive reopening a file database."""
        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            db_path = f.name

        async def write():
            db = connect(f"sqlite:///{db_path}")
            await db.set({"guilds": db.collection()})
            root = await db.get()
            await root["guilds"].set("0", {"name": "persisted"})
            await db.close()

        async def read():
            db = connect(f"sqlite:///{db_path}")
            root = await db.get()
            guild = await root["guilds"].get("0")
            await db.close()
            return guild

        try:
            asyncio.run(write())
            assert asyncio.run(read()) == {"name": "persisted"}
        finally:
            os.unlink(db_path)

    def test_unsupported_schemes(self):
        with pytest.raises(NotImplementedError):
            connect("postgresql://localhost/db")
        with pytest.raises(ValueError):
            connect("etcd://localhost")
