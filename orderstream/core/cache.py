"""
Mirror Cache

Non-authoritative in-memory copy of stored orders, kept for low-latency reads.
Owned by the composition root and passed by reference to the ingestion
subscriber (writer) and the read façade (reader).

Invariants:
- An entry is only set after the same payload was durably stored
- Payloads are immutable bytes, replaced whole; readers never see a partial write
- Per-orderId last-write-wins; no ordering across different orderIds
"""

import threading
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sdk.logging import getLogger

from .store import StoredOrder


class MirrorCache:
    """Thread-safe orderId -> payload map exposing only get / set / bulkLoad."""

    def __init__(self):
        self.log = getLogger()
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, orderId: str) -> Optional[bytes]:
        """Payload for orderId, or None when not cached."""
        with self._lock:
            return self._entries.get(orderId)

    def set(self, orderId: str, payload: bytes) -> None:
        """Replace the entry for orderId."""
        payload = bytes(payload)
        with self._lock:
            self._entries[orderId] = payload

    def bulkLoad(self, records: Iterable[Union[StoredOrder, Tuple[str, bytes]]]) -> int:
        """
        Populate from a finite sequence produced by OrderStore.loadAll().

        Records are expected newest first, so an orderId already present
        (from this load or a concurrent set) keeps its current payload.

        Args:
            records: StoredOrder rows or (orderId, payload) pairs

        Returns:
            Number of entries added
        """
        loaded = 0
        for record in records:
            orderId, payload = record[0], bytes(record[1])
            with self._lock:
                if orderId not in self._entries:
                    self._entries[orderId] = payload
                    loaded += 1

        self.log.info(f'Cache restored: {loaded} orders', cacheSize=len(self))
        return loaded

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, orderId: str) -> bool:
        with self._lock:
            return orderId in self._entries
