"""
In-process Transport Adapter

At-least-once channel living inside one event loop, with the same delivery
contract as the JetStream adapter:
    - Messages published before anyone subscribes are retained
    - A delivery not acknowledged within ackWait is redelivered
    - Acknowledged messages are dropped

Used for local runs without a NATS server and for tests. Retention does not
survive the process.

URI Schemes:
    memory://<name>

Property of Uncompromising Sensors LLC.
"""


# Imports
import asyncio, time
from collections import defaultdict
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

# Local imports
from .transportBase import TransportBase, SubscriptionHandle, Delivery, DeliveryHandler


class _Entry:
    """A retained message."""

    __slots__ = ('seq', 'subject', 'data', 'acked', 'deliveries', 'timer')

    def __init__(self, seq: int, subject: str, data: bytes):
        self.seq = seq
        self.subject = subject
        self.data = data
        self.acked = False
        self.deliveries = 0
        self.timer: Optional[asyncio.TimerHandle] = None


class MemoryDelivery(Delivery):

    def __init__(self, entry: _Entry, onAck: Callable[[_Entry], None]):
        super().__init__(entry.subject, entry.data, entry.deliveries)
        self._entry = entry
        self._onAck = onAck

    async def _sendAck(self) -> None:
        self._entry.acked = True
        self._onAck(self._entry)


class MemoryTransport(TransportBase):
    """In-process durable channel (one subscription per subject)."""

    _VALID_SUBSCRIBE_OPTS = {'durableName', 'ackWait', 'maxInFlight'}


    def __init__(self):
        super().__init__()
        self._seq = 0
        self._retained: Dict[str, Dict[int, _Entry]] = defaultdict(dict)
        self._queues: Dict[str, asyncio.Queue] = {}
        self._ackWait: Dict[str, float] = {}
        self._dispatchers: Dict[str, asyncio.Task] = {}


    @property
    def transportType(self) -> str:
        return 'memory'


    async def connect(self, uri: str, **opts) -> None:
        if self._state == 'READY':
            raise RuntimeError('MemoryTransport already connected')

        self._validateOptions(opts, set())

        parsed = urlparse(uri)
        if parsed.scheme.lower() != 'memory':
            raise ValueError(f"Unsupported scheme '{parsed.scheme}'. Supported: memory")

        self._endpoint = uri
        self._state = 'READY'
        self._connectedAt = time.time()
        self.log.info('MemoryTransport connected', endpoint=uri)


    async def publish(self, subject: str, payload: bytes, timeout: Optional[float] = None) -> None:
        self._requireReady()

        self._seq += 1
        entry = _Entry(self._seq, subject, bytes(payload))
        self._retained[subject][entry.seq] = entry

        queue = self._queues.get(subject)
        if queue is not None:
            queue.put_nowait(entry)


    async def subscribe(self, subject: str, handler: DeliveryHandler, **subOpts) -> SubscriptionHandle:
        self._requireReady()
        self._validateOptions(subOpts, self._VALID_SUBSCRIBE_OPTS)

        if not callable(handler):
            raise ValueError(f"Handler must be callable, got {type(handler)}")
        if subject in self._subscriptions:
            raise RuntimeError(f'Already subscribed: {subject}')

        handle = SubscriptionHandle(subject, self._unsubscribeSubject)
        self._subscriptions[subject] = handle
        self._ackWait[subject] = float(subOpts.get('ackWait', 30.0))

        queue = asyncio.Queue()
        for entry in self._retained[subject].values():
            queue.put_nowait(entry)
        self._queues[subject] = queue

        self._dispatchers[subject] = asyncio.create_task(self._dispatch(subject, queue, handle, handler))
        self.log.info(f'Subscribed: {subject}', ackWait=self._ackWait[subject])
        return handle


    async def close(self, timeout: Optional[float] = None) -> None:
        if self._state == 'CLOSED':
            return
        self._state = 'CLOSED'

        for retained in self._retained.values():
            for entry in retained.values():
                if entry.timer is not None:
                    entry.timer.cancel()

        for task in self._dispatchers.values():
            task.cancel()
        if self._dispatchers:
            await asyncio.gather(*self._dispatchers.values(), return_exceptions=True)

        self._dispatchers.clear()
        self._queues.clear()
        self._subscriptions.clear()
        self.log.info('MemoryTransport closed')


    def pending(self, subject: str) -> int:
        """Number of retained messages not yet acknowledged."""
        return len(self._retained.get(subject, {}))


    # ===== Internal Methods =====
    async def _dispatch(self, subject: str, queue: asyncio.Queue, handle: SubscriptionHandle,
                        handler: DeliveryHandler):
        loop = asyncio.get_running_loop()
        while True:
            entry = await queue.get()
            if entry.acked:
                continue

            entry.deliveries += 1
            handle._incrementMessages()

            if entry.timer is not None:
                entry.timer.cancel()
            entry.timer = loop.call_later(self._ackWait[subject], self._redeliver, entry, entry.deliveries)

            try:
                await handler(MemoryDelivery(entry, self._dropEntry))
            except Exception as e:
                self.log.error(f'Handler error: {e}', subject=subject, exc_info=True)

    def _dropEntry(self, entry: _Entry):
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        retained = self._retained.get(entry.subject)
        if retained is not None:
            retained.pop(entry.seq, None)

    def _redeliver(self, entry: _Entry, attempt: int):
        if self._state != 'READY' or entry.acked or entry.deliveries != attempt:
            return
        queue = self._queues.get(entry.subject)
        if queue is not None:
            queue.put_nowait(entry)

    async def _unsubscribeSubject(self, handle: SubscriptionHandle):
        task = self._dispatchers.pop(handle.subject, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._queues.pop(handle.subject, None)
        await self._unsubscribeHandle(handle)
        self.log.info(f'Unsubscribed: {handle.subject}')
