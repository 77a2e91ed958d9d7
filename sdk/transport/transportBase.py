"""
TransportBase: Abstract base for bytes-in/bytes-out durable pub/sub adapters.

connect(uri, **opts), publish(subject, bytes), subscribe(subject, handler, **subOpts), close()

Delivery contract:
    Handlers receive a Delivery and must settle it explicitly.
    - ack():   the message is done; the channel forgets it
    - defer(): leave it unacknowledged; the channel redelivers after ackWait
    Nothing is acknowledged automatically.

Property of Uncompromising Sensors LLC.
"""


# Imports
import uuid
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Dict, Any

from sdk.logging import getLogger


class Delivery(ABC):
    """
    One delivery of one message.

    Read-only fields:
        - subject: Subject the message was published on
        - data: Raw payload bytes
        - deliveryCount: 1 on first delivery, incremented on each redelivery
        - settled: True once ack() or defer() was called"""


    def __init__(self, subject: str, data: bytes, deliveryCount: int = 1):
        self._subject = subject
        self._data = data
        self._deliveryCount = deliveryCount
        self._acked = False
        self._deferred = False

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def deliveryCount(self) -> int:
        return self._deliveryCount

    @property
    def acked(self) -> bool:
        return self._acked

    @property
    def deferred(self) -> bool:
        return self._deferred

    @property
    def settled(self) -> bool:
        return self._acked or self._deferred

    async def ack(self) -> None:
        """Acknowledge; a no-op when already acknowledged."""
        if self._acked:
            return
        await self._sendAck()
        self._acked = True

    async def defer(self) -> None:
        """Leave unacknowledged so the channel redelivers after its ack deadline."""
        self._deferred = True

    @abstractmethod
    async def _sendAck(self) -> None:
        pass


DeliveryHandler = Callable[[Delivery], Awaitable[None]]


class SubscriptionHandle:
    """
    Lightweight subscription handle for local lifecycle control.

    Read-only fields:
        - subject: The subscription subject
        - active: Whether this subscription is currently active
        - messagesSeen: Deliveries handed to the handler (redeliveries included)"""


    def __init__(self, subject: str, unsubscribeCallback: Callable):
        self._subject = subject
        self._active = True
        self._messagesSeen = 0
        self._unsubscribeCallback = unsubscribeCallback

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def active(self) -> bool:
        return self._active

    @property
    def messagesSeen(self) -> int:
        return self._messagesSeen

    def _incrementMessages(self):
        self._messagesSeen += 1

    async def unsubscribe(self):
        """Stop receiving on this subject (local instance only)."""
        if self._active:
            self._active = False
            await self._unsubscribeCallback(self)


class TransportBase(ABC):
    """
    Abstract base class for transport adapters.

    Lifecycle States:
        - READY: Transport is connected
        - CLOSED: Not connected yet, or shut down"""


    def __init__(self):
        self.log = getLogger()
        self._state = 'CLOSED'
        self._endpoint = None
        self._connectedAt = None
        self._instanceId = str(uuid.uuid4())[:8]
        self._subscriptions: Dict[str, SubscriptionHandle] = {}


    # ===== Core Abstract Methods (Must Implement) =====
    @abstractmethod
    async def connect(self, uri: str, **opts) -> None:
        pass

    @abstractmethod
    async def publish(self, subject: str, payload: bytes, timeout: Optional[float] = None) -> None:
        pass

    @abstractmethod
    async def subscribe(self, subject: str, handler: DeliveryHandler, **subOpts) -> SubscriptionHandle:
        pass

    @abstractmethod
    async def close(self, timeout: Optional[float] = None) -> None:
        pass


    # ===== Core Properties =====
    @property
    @abstractmethod
    def transportType(self) -> str:
        pass

    @property
    def state(self) -> str:
        return self._state

    @property
    def isConnected(self) -> bool:
        return self._state == 'READY'


    # ===== Optional Methods (Safe Base Defaults) =====
    def status(self) -> Dict[str, Any]:
        return {'transport': self.transportType, 'state': self._state, 'endpoint': self._endpoint,
                'sinceTs': self._connectedAt,
                'subs': len([h for h in self._subscriptions.values() if h.active])}


    # ===== Helper Methods =====
    def _requireReady(self):
        if self._state != 'READY':
            raise RuntimeError(f'{type(self).__name__} not connected')

    def _validateOptions(self, opts: dict, validKeys: set):
        unknown = set(opts.keys()) - validKeys
        if unknown:
            raise ValueError(f"Unknown options for {type(self).__name__}: {unknown}. Valid options: {validKeys}")

    async def _unsubscribeHandle(self, handle: SubscriptionHandle):
        if handle.subject in self._subscriptions:
            del self._subscriptions[handle.subject]

    # ===== Context Manager Support =====
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
