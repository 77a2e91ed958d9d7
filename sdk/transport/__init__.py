"""sdk.transport - durable pub/sub transport layer with explicit acknowledgement.

Public API:
    - TransportBase: Abstract base class for transport adapters
    - Delivery: One delivery of one message (ack / defer)
    - SubscriptionHandle: Lightweight subscription handle
    - createTransport: Factory function for creating transports from URIs
    - registerAdapter: Register custom transport adapters
    - NatsTransport: NATS JetStream adapter ('nats')
    - MemoryTransport: In-process adapter ('memory')

Usage:
    from sdk.transport import createTransport

    transport = createTransport('nats://127.0.0.1:4222')
    await transport.connect('nats://127.0.0.1:4222', stream='ORDERS')

    async def handler(delivery):
        print(delivery.subject, delivery.data)
        await delivery.ack()

    handle = await transport.subscribe('orders', handler, durableName='order-ingest')
    await transport.publish('orders', b'{"order_uid": "abc123"}')

    await transport.close()

Property of Uncompromising Sensors LLC.
"""

from .transportBase import TransportBase, SubscriptionHandle, Delivery, DeliveryHandler
from .transportFactory import (
    createTransport,
    registerAdapter,
    TransportRegistry,
    getDefaultRegistry
)
from .natsTransport import NatsTransport
from .memoryTransport import MemoryTransport

# Register default adapters
registerAdapter('nats', NatsTransport)
registerAdapter('memory', MemoryTransport)

__all__ = [
    'TransportBase',
    'SubscriptionHandle',
    'Delivery',
    'DeliveryHandler',
    'createTransport',
    'registerAdapter',
    'TransportRegistry',
    'getDefaultRegistry',
    'NatsTransport',
    'MemoryTransport'
]
