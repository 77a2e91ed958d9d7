"""
orderstream Core Package

Ingestion pipeline: message normalization, the durable store, the mirror
cache, warm-start and the durable-channel subscriber.

Architecture Invariants:
- The store holds the only durable copy; the cache is a redundant read copy
- A cache entry is written only after the durable write succeeded
- Latest write per orderId wins, in storage and in the cache
- Invalid messages are acknowledged and dropped; store failures are redelivered
"""

from .contract import DeliveryState
from .normalizer import normalize, NormalizedOrder, NormalizationError, MalformedPayload, MissingIdentifier
from .store import OrderStore, StoredOrder, StoreError
from .cache import MirrorCache
from .bootstrap import warmStart, WarmStartError
from .subscriber import IngestionSubscriber, SubscriberError

__all__ = [
    'DeliveryState',
    'normalize', 'NormalizedOrder', 'NormalizationError', 'MalformedPayload', 'MissingIdentifier',
    'OrderStore', 'StoredOrder', 'StoreError',
    'MirrorCache',
    'warmStart', 'WarmStartError',
    'IngestionSubscriber', 'SubscriberError',
]
