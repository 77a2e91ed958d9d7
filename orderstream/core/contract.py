"""
orderstream Contract Definitions

Single source of truth for the constants and enums shared by the ingest
pipeline, the store and the read façade. Import from here rather than
repeating literals.
"""

from enum import Enum


# ============================================================================
# Identity
# ============================================================================

# Top-level JSON field that carries the order identifier
DEFAULT_ID_FIELD = "order_uid"


# ============================================================================
# Storage
# ============================================================================

ORDERS_TABLE = "orders"

# Rows returned by the list read path (and loadAll when no limit is given)
DEFAULT_LIST_LIMIT = 500

# Rows fetched per round trip while streaming loadAll
LOAD_BATCH_SIZE = 256


# ============================================================================
# Ingestion
# ============================================================================

DEFAULT_SUBJECT = "orders"
DEFAULT_DURABLE_NAME = "order-ingest"
DEFAULT_ACK_WAIT_SECONDS = 30.0
DEFAULT_MAX_IN_FLIGHT = 64
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0


class DeliveryState(str, Enum):
    """
    Per-delivery state machine.

    RECEIVED -> NORMALIZED -> PERSISTED -> CACHED -> ACKNOWLEDGED
    Terminal failures:
      REJECTED - permanently invalid, acknowledged so it is never redelivered
      DEFERRED - transient store failure, left unacknowledged for redelivery
    """
    RECEIVED = "received"
    NORMALIZED = "normalized"
    PERSISTED = "persisted"
    CACHED = "cached"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"
    DEFERRED = "deferred"
