"""
Read Façade

The only read-side entry point into the core. Point lookups are served from
the mirror cache; the recent-orders list is served from durable storage.
Store failures never leak past this layer as anything other than
StoreError on the list path (reported to HTTP clients as unavailable).
"""

from typing import List, Optional

from orderstream.core.cache import MirrorCache
from orderstream.core.contract import DEFAULT_LIST_LIMIT
from orderstream.core.store import OrderStore, StoredOrder


class ReadFacade:

    def __init__(self, cache: MirrorCache, store: OrderStore, maxListLimit: int = DEFAULT_LIST_LIMIT):
        self.cache = cache
        self.store = store
        self.maxListLimit = maxListLimit

    def getOrder(self, orderId: str) -> Optional[bytes]:
        """Canonical payload for orderId, or None (not found)."""
        if not orderId:
            return None
        return self.cache.get(orderId)

    def listRecentOrders(self, limit: Optional[int] = None) -> List[StoredOrder]:
        """
        Most recent orders, newest first, no duplicate ids.

        limit is capped at maxListLimit; None means maxListLimit.
        Blocking (store I/O): call from a worker thread in async code.

        Raises:
            ValueError: limit is less than 1
            StoreError: Storage unavailable
        """
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit}")
        if limit is None or limit > self.maxListLimit:
            limit = self.maxListLimit
        return list(self.store.loadAll(limit))
