"""
orderstream durable store tests

Covers:
- Upsert idempotence and latest-write-wins per orderId
- createdAt assignment (preserved on overwrite, strictly increasing)
- loadAll ordering, bounds, laziness
- Persistence across reopen
- Failure surface (StoreError)

Property of Uncompromising Sensors LLC.
"""

import os
import sys
import tempfile
import threading
import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from orderstream.core.store import OrderStore, StoredOrder, StoreError


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def dbPath():
    """Temporary database path"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, 'orders.db')


@pytest.fixture
def tempStore(dbPath):
    """Open store on a temporary database"""
    store = OrderStore(dbPath)
    yield store
    store.close()


# ============================================================================
# Upsert
# ============================================================================

class TestUpsert:
    """One row per orderId, last write wins"""

    def test_insert_and_load(self, tempStore):
        tempStore.upsert("abc123", b'{"order_uid":"abc123"}')

        rows = list(tempStore.loadAll())
        assert len(rows) == 1
        assert isinstance(rows[0], StoredOrder)
        assert rows[0].orderId == "abc123"
        assert rows[0].payload == b'{"order_uid":"abc123"}'
        assert rows[0].createdAt

    def test_idempotent(self, tempStore):
        """Repeating the same upsert leaves exactly one identical row"""
        payload = b'{"order_uid":"dup"}'
        tempStore.upsert("dup", payload)
        first = list(tempStore.loadAll())

        tempStore.upsert("dup", payload)
        tempStore.upsert("dup", payload)
        second = list(tempStore.loadAll())

        assert tempStore.count() == 1
        assert first == second

    def test_latest_write_wins(self, tempStore):
        """Overwrite replaces the payload but keeps the original createdAt"""
        tempStore.upsert("o1", b'{"v":1}')
        createdAt = list(tempStore.loadAll())[0].createdAt

        tempStore.upsert("o1", b'{"v":2}')
        rows = list(tempStore.loadAll())

        assert len(rows) == 1
        assert rows[0].payload == b'{"v":2}'
        assert rows[0].createdAt == createdAt

    def test_payload_bytes_unchanged(self, tempStore):
        """Payload round-trips byte for byte, including non-ASCII UTF-8"""
        payload = '{"city":"Köln","order_uid":"u1"}'.encode('utf-8')
        tempStore.upsert("u1", payload)
        assert list(tempStore.loadAll())[0].payload == payload

    def test_concurrent_upserts(self, tempStore):
        """Upserts from several threads all land"""
        def writer(prefix):
            for i in range(25):
                tempStore.upsert(f"{prefix}-{i}", b'{}')

        threads = [threading.Thread(target=writer, args=(f"t{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tempStore.count() == 100

    def test_on_commit_runs_under_write_lock(self, tempStore):
        """The commit callback sees the committed row while writers are held off"""
        seen = []

        def onCommit(orderId, payload):
            seen.append((orderId, payload, tempStore._writeLock.locked()))

        tempStore.upsert("cb", b'{"v":1}', onCommit)

        assert seen == [("cb", b'{"v":1}', True)]
        assert list(tempStore.loadAll())[0].payload == b'{"v":1}'

    def test_on_commit_skipped_on_failure(self, dbPath):
        store = OrderStore(dbPath)
        store.close()
        seen = []

        with pytest.raises(StoreError):
            store.upsert("late", b'{}', lambda orderId, payload: seen.append(orderId))
        assert seen == []

    def test_upsert_after_close_raises(self, dbPath):
        store = OrderStore(dbPath)
        store.close()

        with pytest.raises(StoreError):
            store.upsert("late", b'{}')
        with pytest.raises(StoreError):
            store.count()


# ============================================================================
# loadAll
# ============================================================================

class TestLoadAll:
    """Newest first, bounded, lazy"""

    def test_newest_first(self, tempStore):
        for orderId in ("a", "b", "c"):
            tempStore.upsert(orderId, b'{}')

        assert [row.orderId for row in tempStore.loadAll()] == ["c", "b", "a"]

    def test_overwrite_keeps_position(self, tempStore):
        """Re-ingesting an old order does not move it to the front"""
        for orderId in ("a", "b"):
            tempStore.upsert(orderId, b'{}')
        tempStore.upsert("a", b'{"again":true}')

        assert [row.orderId for row in tempStore.loadAll()] == ["b", "a"]

    def test_created_at_strictly_increasing(self, tempStore):
        """Back-to-back inserts never share a createdAt"""
        for i in range(200):
            tempStore.upsert(f"o{i}", b'{}')

        stamps = [row.createdAt for row in tempStore.loadAll(None)]
        assert len(stamps) == 200
        assert len(set(stamps)) == 200
        assert stamps == sorted(stamps, reverse=True)

    def test_default_limit_bounds_listing(self, tempStore):
        """600 stored orders list as the 500 most recent"""
        for i in range(600):
            tempStore.upsert(f"o{i:04d}", b'{}')

        rows = list(tempStore.loadAll())
        assert len(rows) == 500
        assert rows[0].orderId == "o0599"
        assert rows[-1].orderId == "o0100"

    def test_unbounded(self, tempStore):
        for i in range(600):
            tempStore.upsert(f"o{i}", b'{}')
        assert len(list(tempStore.loadAll(None))) == 600

    def test_explicit_limit(self, tempStore):
        for i in range(10):
            tempStore.upsert(f"o{i}", b'{}')
        assert len(list(tempStore.loadAll(3))) == 3
        assert list(tempStore.loadAll(0)) == []

    def test_negative_limit_rejected(self, tempStore):
        with pytest.raises(ValueError):
            tempStore.loadAll(-1)

    def test_empty_store(self, tempStore):
        assert list(tempStore.loadAll()) == []

    def test_lazy_and_single_use(self, tempStore):
        """Nothing is read until iteration starts; an iterator cannot be replayed"""
        tempStore.upsert("before", b'{}')
        rows = tempStore.loadAll(None)
        tempStore.upsert("after", b'{}')

        assert [row.orderId for row in rows] == ["after", "before"]
        assert list(rows) == []
        assert len(list(tempStore.loadAll(None))) == 2

    def test_no_duplicate_ids(self, tempStore):
        for _ in range(3):
            for orderId in ("x", "y"):
                tempStore.upsert(orderId, b'{}')
        ids = [row.orderId for row in tempStore.loadAll()]
        assert sorted(ids) == ["x", "y"]


# ============================================================================
# Durability
# ============================================================================

class TestDurability:
    """Rows survive close and reopen"""

    def test_reopen(self, dbPath):
        with OrderStore(dbPath) as store:
            store.upsert("keep", b'{"order_uid":"keep"}')

        with OrderStore(dbPath) as store:
            rows = list(store.loadAll())
            assert [(row.orderId, row.payload) for row in rows] == [("keep", b'{"order_uid":"keep"}')]

    def test_created_at_monotonic_across_reopen(self, dbPath):
        """A reopened store continues after the newest stored createdAt"""
        with OrderStore(dbPath) as store:
            store.upsert("first", b'{}')

        with OrderStore(dbPath) as store:
            store.upsert("second", b'{}')
            rows = list(store.loadAll())
            assert [row.orderId for row in rows] == ["second", "first"]
            assert rows[0].createdAt > rows[1].createdAt

    def test_checkpoint(self, tempStore):
        tempStore.upsert("c", b'{}')
        blocked, logPages, checkpointed = tempStore.checkpoint('PASSIVE')
        assert blocked == 0

        with pytest.raises(ValueError):
            tempStore.checkpoint('BOGUS')

    def test_unopenable_path(self, dbPath):
        """A directory where the database file should be is a StoreError"""
        os.makedirs(dbPath)
        with pytest.raises(StoreError):
            OrderStore(dbPath)
