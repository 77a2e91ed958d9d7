"""
orderstream Ingestion Subscriber

Binds a delivery handler to a durable subscription and drives every
delivered message through normalize -> persist -> cache -> acknowledge.

State machine per delivery (see contract.DeliveryState):
  RECEIVED      normalize(raw)
                  MalformedPayload / MissingIdentifier -> REJECTED (ack, nothing written)
  NORMALIZED    store.upsert(orderId, payload, onCommit=cache.set) on the ingest worker pool
                  StoreError -> DEFERRED (no ack, cache untouched, channel redelivers after ackWait)
  PERSISTED     cache.set(orderId, payload), run under the store write lock so the
                cache applies same-id overwrites in commit order
  CACHED        delivery.ack()
  ACKNOWLEDGED

Delivery semantics:
- At-least-once: the same orderId may arrive again at any time (redelivery,
  duplicate publish). Upsert is idempotent, so re-entering the state machine
  is safe; the last write observed by this process wins.
- At most maxInFlight deliveries are processed concurrently. The blocking
  store call runs on a thread pool of the same size.
- stop() stops taking new deliveries, gives in-flight ones a grace period to
  finish, then cancels the rest. Cancelled deliveries were never acked and are
  redelivered to the next running instance.

Property of Uncompromising Sensors LLC.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Set

from sdk.logging import getLogger
from sdk.transport import Delivery, SubscriptionHandle, TransportBase

from .cache import MirrorCache
from .contract import (
    DeliveryState,
    DEFAULT_ID_FIELD, DEFAULT_SUBJECT, DEFAULT_DURABLE_NAME,
    DEFAULT_ACK_WAIT_SECONDS, DEFAULT_MAX_IN_FLIGHT, DEFAULT_SHUTDOWN_GRACE_SECONDS
)
from .normalizer import normalize, NormalizationError
from .store import OrderStore, StoreError


class SubscriberError(Exception):
    """Subscriber lifecycle error"""
    pass


class IngestionSubscriber:
    """
    Durable-channel subscriber feeding the store and the mirror cache.

    The cache must already be warm (see bootstrap.warmStart) before start()
    is called; deliveries are accepted from start() onwards.
    """

    def __init__(self, transport: TransportBase, store: OrderStore, cache: MirrorCache,
                 subject: str = DEFAULT_SUBJECT, idField: str = DEFAULT_ID_FIELD,
                 durableName: str = DEFAULT_DURABLE_NAME,
                 ackWait: float = DEFAULT_ACK_WAIT_SECONDS,
                 maxInFlight: int = DEFAULT_MAX_IN_FLIGHT):
        """
        Args:
            transport: Connected sdk.transport instance
            store: Durable store (the only durable copy)
            cache: Mirror cache updated after each successful upsert
            subject: Subject to subscribe to
            idField: Top-level JSON field carrying the order identifier
            durableName: Durable consumer / queue group name
            ackWait: Seconds the channel waits for an ack before redelivering
            maxInFlight: Upper bound on concurrently processed deliveries
        """
        if maxInFlight < 1:
            raise ValueError(f"maxInFlight must be >= 1, got {maxInFlight}")

        self.log = getLogger()
        self.transport = transport
        self.store = store
        self.cache = cache
        self.subject = subject
        self.idField = idField
        self.durableName = durableName
        self.ackWait = ackWait
        self.maxInFlight = maxInFlight

        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots: Optional[asyncio.Semaphore] = None
        self._inFlight: Set[asyncio.Task] = set()
        self._subscription: Optional[SubscriptionHandle] = None
        self._accepting = False
        self._counters: Dict[str, int] = {
            'received': 0, 'acknowledged': 0, 'rejected': 0, 'deferred': 0, 'ignored': 0
        }

    @property
    def running(self) -> bool:
        return self._accepting

    async def start(self):
        """Create the worker pool and bind the delivery handler to the subscription."""
        if self._accepting or self._subscription is not None:
            raise SubscriberError("IngestionSubscriber already running")

        self._ensureWorkers()
        self._accepting = True

        try:
            self._subscription = await self.transport.subscribe(
                self.subject,
                self._onDelivery,
                durableName=self.durableName,
                ackWait=self.ackWait,
                maxInFlight=self.maxInFlight
            )
        except Exception:
            self._accepting = False
            raise

        self.log.info(f'Subscription active: {self.subject}', durableName=self.durableName,
                      maxInFlight=self.maxInFlight, ackWait=self.ackWait)

    async def stop(self, grace: float = DEFAULT_SHUTDOWN_GRACE_SECONDS):
        """
        Stop taking deliveries and drain in-flight ones.

        Args:
            grace: Seconds in-flight deliveries get to finish before cancellation
        """
        if not self._accepting and not self._inFlight:
            self._shutdownWorkers()
            return

        self._accepting = False
        await self._unsubscribe()
        pending = set(self._inFlight)
        self.log.info('Stopping subscriber', inFlight=len(pending), grace=grace)

        if pending:
            _, notDone = await asyncio.wait(pending, timeout=grace)
            if notDone:
                self.log.warning(f'Cancelling {len(notDone)} unfinished deliveries; they will be redelivered')
                for task in notDone:
                    task.cancel()
                await asyncio.gather(*notDone, return_exceptions=True)

        self._shutdownWorkers()
        self.log.info('Subscriber stopped', **self.stats())

    def stats(self) -> Dict[str, int]:
        stats = dict(self._counters)
        stats['inFlight'] = len(self._inFlight)
        return stats

    async def processDelivery(self, delivery: Delivery) -> DeliveryState:
        """
        Run one delivery through the state machine.

        Returns:
            ACKNOWLEDGED, REJECTED or DEFERRED; CACHED when the ack itself failed
        """
        self._ensureWorkers()
        self._counters['received'] += 1

        try:
            order = normalize(delivery.data, self.idField)
        except NormalizationError as e:
            self.log.warning(f'Skip message: {e}', subject=delivery.subject,
                             reason=type(e).__name__, deliveryCount=delivery.deliveryCount)
            self._counters['rejected'] += 1
            await self._ackQuietly(delivery)
            return DeliveryState.REJECTED

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self.store.upsert,
                                       order.orderId, order.payload, self.cache.set)
        except StoreError as e:
            self.log.error(f'Persist error: {e}', orderId=order.orderId,
                           deliveryCount=delivery.deliveryCount)
            self._counters['deferred'] += 1
            await delivery.defer()
            return DeliveryState.DEFERRED

        if not await self._ackQuietly(delivery):
            # Stored and cached; redelivery repeats the idempotent path
            return DeliveryState.CACHED

        self._counters['acknowledged'] += 1
        self.log.info(f'Saved order {order.orderId}', deliveryCount=delivery.deliveryCount)
        return DeliveryState.ACKNOWLEDGED

    # ===== Internal Methods =====
    def _ensureWorkers(self):
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.maxInFlight,
                                                thread_name_prefix='order-ingest')
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.maxInFlight)

    async def _unsubscribe(self):
        # Durable consumer state is kept by the channel; unacked deliveries are redelivered
        subscription, self._subscription = self._subscription, None
        if subscription is not None and subscription.active:
            try:
                await subscription.unsubscribe()
            except Exception as e:
                self.log.warning(f'Unsubscribe failed: {e}', subject=self.subject)

    def _shutdownWorkers(self):
        if self._executor is not None:
            # Upserts already running on worker threads complete; their deliveries stay unacked
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    async def _onDelivery(self, delivery: Delivery):
        """
        Subscription handler.

        Waits for a free slot, then processes the delivery as its own task so
        the transport can hand over the next message.
        """
        if not self._accepting:
            # Left unacked: redelivered to whichever instance is running
            self._counters['ignored'] += 1
            return

        await self._slots.acquire()
        if not self._accepting:
            self._slots.release()
            self._counters['ignored'] += 1
            return

        task = asyncio.create_task(self._runDelivery(delivery))
        self._inFlight.add(task)
        task.add_done_callback(self._deliveryDone)

    async def _runDelivery(self, delivery: Delivery):
        try:
            await self.processDelivery(delivery)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Unexpected failure: treat like a transient one and let the channel redeliver
            self._counters['deferred'] += 1
            self.log.error(f'Error handling message on {delivery.subject}: {e}', exc_info=True)
            await delivery.defer()

    def _deliveryDone(self, task: asyncio.Task):
        self._inFlight.discard(task)
        self._slots.release()

    async def _ackQuietly(self, delivery: Delivery) -> bool:
        try:
            await delivery.ack()
            return True
        except Exception as e:
            self.log.warning(f'Ack failed: {e}', subject=delivery.subject)
            return False
