"""
Warm-start: rebuild the mirror cache from durable storage before ingestion
starts, so no reader ever sees an entry that skipped storage.

Failure policy is explicit (warmStart.failOnError):
- False (default): log and continue with whatever was loaded. Availability
  over consistency: the service boots degraded, reads miss until the orders
  are redelivered or republished.
- True: raise WarmStartError and refuse to start.
"""

import time
from typing import Optional

from sdk.logging import getLogger

from .cache import MirrorCache
from .store import OrderStore, StoreError


log = getLogger()


class WarmStartError(Exception):
    """Cache warm-up failed and the process is configured not to boot degraded"""
    pass


def warmStart(store: OrderStore, cache: MirrorCache, limit: Optional[int] = None,
              failOnError: bool = False) -> int:
    """
    Bulk-load the cache from store.loadAll().

    Args:
        store: Durable store
        cache: Cache to populate (normally empty)
        limit: Most recent rows to load, None for all
        failOnError: Raise instead of booting with a partial/empty cache

    Returns:
        Number of entries loaded

    Raises:
        WarmStartError: On load failure when failOnError is True
    """
    started = time.monotonic()
    try:
        loaded = cache.bulkLoad(store.loadAll(limit))
    except StoreError as e:
        if failOnError:
            raise WarmStartError(f"warmup cache failed: {e}") from e
        log.error(f'Warmup cache failed, continuing degraded: {e}', cacheSize=len(cache))
        return len(cache)

    log.info('Warm-start complete', loaded=loaded,
             elapsedMs=round((time.monotonic() - started) * 1000, 1))
    return loaded
