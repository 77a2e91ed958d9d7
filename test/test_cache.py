"""
orderstream mirror cache and warm-start tests

Covers:
- get / set / bulkLoad semantics
- Concurrent readers and writers
- Warm-start consistency with the store
- Degraded boot vs failOnError

Property of Uncompromising Sensors LLC.
"""

import os
import sys
import tempfile
import threading
import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from orderstream.core.cache import MirrorCache
from orderstream.core.bootstrap import warmStart, WarmStartError
from orderstream.core.store import OrderStore, StoredOrder, StoreError


@pytest.fixture
def dbPath():
    """Temporary database path"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, 'orders.db')


class BrokenStore:
    """Store whose listing fails after yielding `good` rows"""

    def __init__(self, good=0):
        self.good = good

    def loadAll(self, limit=None):
        def rows():
            for i in range(self.good):
                yield StoredOrder(f"ok{i}", b'{}', f"2026-01-01T00:00:0{i}+00:00")
            raise StoreError("database is locked")
        return rows()


# ============================================================================
# MirrorCache
# ============================================================================

class TestMirrorCache:

    def test_get_missing(self):
        assert MirrorCache().get("nope") is None

    def test_set_replaces(self):
        cache = MirrorCache()
        cache.set("a", b'{"v":1}')
        cache.set("a", b'{"v":2}')

        assert cache.get("a") == b'{"v":2}'
        assert len(cache) == 1
        assert "a" in cache

    def test_set_copies_mutable_buffers(self):
        """A later change to the caller's buffer is not visible to readers"""
        cache = MirrorCache()
        buffer = bytearray(b'{"v":1}')
        cache.set("a", buffer)
        buffer[5:6] = b'9'

        assert cache.get("a") == b'{"v":1}'

    def test_bulk_load(self):
        cache = MirrorCache()
        loaded = cache.bulkLoad([StoredOrder("a", b'1', "t2"), ("b", b'2')])

        assert loaded == 2
        assert sorted(cache.ids()) == ["a", "b"]

    def test_bulk_load_keeps_newest(self):
        """Records arrive newest first; an id already present is not overwritten"""
        cache = MirrorCache()
        cache.set("a", b'live')
        loaded = cache.bulkLoad([("a", b'stored'), ("b", b'new'), ("b", b'older')])

        assert loaded == 1
        assert cache.get("a") == b'live'
        assert cache.get("b") == b'new'

    def test_concurrent_access(self):
        """Readers only ever observe complete payloads"""
        cache = MirrorCache()
        payloads = [bytes(f'{{"v":{i}}}', 'ascii') for i in range(200)]
        errors = []

        def writer():
            for payload in payloads:
                cache.set("hot", payload)

        def reader():
            for _ in range(500):
                value = cache.get("hot")
                if value is not None and value not in payloads:
                    errors.append(value)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert cache.get("hot") == payloads[-1]


# ============================================================================
# Warm-start
# ============================================================================

class TestWarmStart:

    def test_cache_matches_store(self, dbPath):
        """After warm-start every stored order is served from the cache"""
        with OrderStore(dbPath) as store:
            store.upsert("a", b'{"order_uid":"a"}')
            store.upsert("b", b'{"order_uid":"b"}')
            store.upsert("a", b'{"order_uid":"a","v":2}')

        with OrderStore(dbPath) as store:
            cache = MirrorCache()
            loaded = warmStart(store, cache)

            assert loaded == 2
            for row in store.loadAll(None):
                assert cache.get(row.orderId) == row.payload
            assert cache.get("a") == b'{"order_uid":"a","v":2}'

    def test_loads_beyond_list_limit(self, dbPath):
        """Warm-start is not bounded by the listing limit"""
        with OrderStore(dbPath) as store:
            for i in range(600):
                store.upsert(f"o{i}", b'{}')

            cache = MirrorCache()
            assert warmStart(store, cache) == 600

    def test_limit(self, dbPath):
        with OrderStore(dbPath) as store:
            for i in range(10):
                store.upsert(f"o{i}", b'{}')

            cache = MirrorCache()
            assert warmStart(store, cache, limit=4) == 4
            assert "o9" in cache
            assert "o0" not in cache

    def test_empty_store(self, dbPath):
        with OrderStore(dbPath) as store:
            cache = MirrorCache()
            assert warmStart(store, cache) == 0
            assert len(cache) == 0

    def test_degraded_boot(self):
        """Default policy: keep what was loaded and continue"""
        cache = MirrorCache()
        loaded = warmStart(BrokenStore(good=2), cache)

        assert loaded == 2
        assert sorted(cache.ids()) == ["ok0", "ok1"]

    def test_fail_on_error(self):
        cache = MirrorCache()
        with pytest.raises(WarmStartError, match="warmup cache failed"):
            warmStart(BrokenStore(), cache, failOnError=True)
