"""
orderstream main entry point (composition root).

Boot sequence:
    1. Load config, configure logging
    2. Open the durable store
    3. Warm-start the mirror cache from the store (degraded boot unless
       warmStart.failOnError is set)
    4. Connect the transport and start the ingestion subscriber
    5. Start the HTTP read façade
    6. Run until SIGINT/SIGTERM, then shut down in reverse order, giving
       in-flight deliveries ingest.shutdownGraceSeconds to finish

Usage:
    python -m orderstream.main [--config orderstream/config.json]

Property of Uncompromising Sensors LLC.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from orderstream.config import loadConfig, ConfigError, DEFAULT_CONFIG_PATH
from orderstream.core.bootstrap import warmStart, WarmStartError
from orderstream.core.cache import MirrorCache
from orderstream.core.store import OrderStore, StoreError
from orderstream.core.subscriber import IngestionSubscriber
from orderstream.server.facade import ReadFacade
from orderstream.server.server import OrderServer
from sdk.logging import getLogger, configureLogging
from sdk.transport import createTransport


CHECKPOINT_INTERVAL_SECONDS = 60


def transportConnectOptions(transportConfig: dict, transportType: str) -> dict:
    """Connect options understood by the selected adapter."""
    if transportType != 'nats':
        return {}
    opts = {'name': transportConfig['name']}
    if transportConfig.get('stream'):
        opts['stream'] = transportConfig['stream']
    return opts


async def runService(config: dict, stopEvent: Optional[asyncio.Event] = None):
    """
    Run the ingest pipeline and HTTP server until stopEvent is set.

    Raises:
        StoreError: The store cannot be opened
        WarmStartError: Warm-start failed with warmStart.failOnError set
    """
    log = getLogger('orderstream.main')
    stopEvent = stopEvent or asyncio.Event()

    store = OrderStore(config['dbPath'])
    cache = MirrorCache()
    transport = None
    subscriber = None
    server = None
    checkpointTask = None

    async def periodicCheckpoint():
        while True:
            await asyncio.sleep(CHECKPOINT_INTERVAL_SECONDS)
            blocked, logPages, checkpointed = store.checkpoint('PASSIVE')
            if logPages > 0:
                log.debug(f"WAL checkpoint: {checkpointed}/{logPages} pages")

    try:
        warmConfig = config['warmStart']
        warmStart(store, cache, limit=warmConfig['limit'], failOnError=warmConfig['failOnError'])

        checkpointTask = asyncio.create_task(periodicCheckpoint())

        transportConfig = config['transport']
        transport = createTransport(transportConfig['uri'])
        await transport.connect(transportConfig['uri'],
                                **transportConnectOptions(transportConfig, transport.transportType))

        subscriber = IngestionSubscriber(
            transport, store, cache,
            subject=transportConfig['subject'],
            idField=config['idField'],
            durableName=transportConfig['durableName'],
            ackWait=transportConfig['ackWaitSeconds'],
            maxInFlight=config['ingest']['maxInFlight']
        )
        await subscriber.start()

        facade = ReadFacade(cache, store, maxListLimit=config['server']['listLimit'])
        server = OrderServer(config['server'], facade, subscriber)
        await server.start()

        log.info("orderstream running", cacheSize=len(cache))
        await stopEvent.wait()
        log.info("Shutting down...")

    finally:
        if server:
            await server.stop()
        if subscriber:
            await subscriber.stop(grace=config['ingest']['shutdownGraceSeconds'])
        if transport:
            await transport.close()
        if checkpointTask:
            checkpointTask.cancel()
            await asyncio.gather(checkpointTask, return_exceptions=True)
        store.close()
        log.info("orderstream stopped")


async def _runUntilSignalled(config: dict):
    stopEvent = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopEvent.set)
        except NotImplementedError:
            # Windows: SIGINT still arrives as KeyboardInterrupt
            continue
    await runService(config, stopEvent)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='orderstream - order ingestion with a mirrored read cache')
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help='Path to config file')
    args = parser.parse_args(argv)

    configPath = Path(args.config)
    try:
        config = loadConfig(configPath if configPath.exists() else None)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logConfig = config['logging']
    configureLogging(logDir=logConfig['dir'], level=logConfig['level'], console=logConfig['console'])
    log = getLogger('orderstream.main')
    log.info("=" * 60)
    log.info("orderstream - order ingestion service")
    log.info("=" * 60)
    if configPath.exists():
        log.info(f"Config: {configPath}")
    else:
        log.warning(f"Config file not found: {configPath}, using defaults and environment")

    try:
        asyncio.run(_runUntilSignalled(config))
    except KeyboardInterrupt:
        log.info("Shutdown signal received")
    except (StoreError, WarmStartError) as e:
        log.error(f"Fatal: {e}")
        return 1
    except Exception as e:
        log.error(f"Fatal error: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
