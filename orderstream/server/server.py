"""
orderstream HTTP server - read-only edge over the read façade.

Routes:
    GET /api/orders/{id}    canonical payload from the mirror cache, 404 if unknown
    GET /api/orders         most recent orders from storage (?limit=N)
    GET /health             liveness + cache size + ingest counters

Architecture invariants:
- Handlers never write; ingestion is the only writer
- Point lookups never touch storage
- Storage failures surface as 503, never as partial data

Property of Uncompromising Sensors LLC.
"""

import asyncio
import orjson
from aiohttp import web
from typing import Dict, Any, Optional

from orderstream.core.store import StoreError
from orderstream.server.facade import ReadFacade
from sdk.logging import getLogger


def _jsonResponse(body, status: int = 200) -> web.Response:
    return web.Response(body=orjson.dumps(body), status=status, content_type='application/json')


class OrderServer:
    """aiohttp application serving order lookups."""

    def __init__(self, config: Dict[str, Any], facade: ReadFacade, subscriber=None):
        """
        Args:
            config: 'server' config section (host, port)
            facade: Read façade over cache + store
            subscriber: IngestionSubscriber, reported by /health when given
        """
        self.config = config
        self.facade = facade
        self.subscriber = subscriber
        self.log = getLogger()

        self.app = web.Application()
        self._setupRoutes()

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def _setupRoutes(self):
        self.app.router.add_get('/api/orders/{id}', self.handleGetOrder)
        self.app.router.add_get('/api/orders', self.handleListOrders)
        self.app.router.add_get('/health', self.handleHealth)

    async def start(self):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        host = self.config.get('host', '0.0.0.0')
        port = self.config.get('port', 8080)

        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        self.log.info(f"HTTP listening on {host}:{port}")

    async def stop(self):
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        self.log.info("HTTP server stopped")

    # =========================================================================
    # HTTP Handlers
    # =========================================================================

    async def handleGetOrder(self, request: web.Request) -> web.Response:
        orderId = request.match_info.get('id', '')
        if not orderId:
            return _jsonResponse({'error': 'missing id'}, status=400)

        payload = self.facade.getOrder(orderId)
        if payload is None:
            return _jsonResponse({'error': 'not found'}, status=404)

        return web.Response(body=payload, content_type='application/json')

    async def handleListOrders(self, request: web.Request) -> web.Response:
        limit = None
        rawLimit = request.query.get('limit')
        if rawLimit is not None:
            try:
                limit = int(rawLimit)
            except ValueError:
                return _jsonResponse({'error': 'limit must be an integer'}, status=400)
            if limit < 1:
                return _jsonResponse({'error': 'limit must be positive'}, status=400)

        loop = asyncio.get_running_loop()
        try:
            orders = await loop.run_in_executor(None, self.facade.listRecentOrders, limit)
        except StoreError as e:
            self.log.error(f'List orders failed: {e}')
            return _jsonResponse({'error': 'storage unavailable'}, status=503)

        return _jsonResponse([
            {'id': order.orderId, 'payload': orjson.Fragment(order.payload), 'created_at': order.createdAt}
            for order in orders
        ])

    async def handleHealth(self, request: web.Request) -> web.Response:
        health = {'status': 'ok', 'cacheSize': len(self.facade.cache)}
        if self.subscriber is not None:
            health['ingest'] = self.subscriber.stats()
            health['ingesting'] = self.subscriber.running
        return _jsonResponse(health)
