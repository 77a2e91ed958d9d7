"""
orderstream test publisher.

Publishes one JSON document from a file to the ingest subject, after checking
locally that it parses and carries the order identifier. The file bytes are
published unchanged; canonicalization happens on the ingest side.

Usage:
    orderstream-publish [--file model.json] [--config orderstream/config.json]
                        [--uri nats://127.0.0.1:4222] [--subject orders]

Property of Uncompromising Sensors LLC.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from orderstream.config import loadConfig, ConfigError
from orderstream.core.normalizer import normalize, NormalizationError
from sdk.logging import getLogger, configureLogging
from sdk.transport import createTransport


async def publishDocument(data: bytes, uri: str, subject: str, idField: str, stream: Optional[str] = None) -> str:
    """
    Validate and publish one document.

    Returns:
        The order identifier found in the document

    Raises:
        NormalizationError: Not JSON, or identifier missing (nothing is published)
    """
    orderId = normalize(data, idField).orderId

    transport = createTransport(uri)
    connectOpts = {}
    if transport.transportType == 'nats':
        connectOpts = {'name': f"order-publisher-{datetime.now().strftime('%H%M%S')}"}
        if stream:
            connectOpts['stream'] = stream

    await transport.connect(uri, **connectOpts)
    try:
        await transport.publish(subject, data)
    finally:
        await transport.close()

    return orderId


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Publish one order document to the ingest subject')
    parser.add_argument('--file', default='model.json', help='JSON document to publish')
    parser.add_argument('--config', default=None, help='Path to config file (defaults + environment if omitted)')
    parser.add_argument('--uri', default=None, help='Transport URI (overrides config)')
    parser.add_argument('--subject', default=None, help='Subject (overrides config)')
    args = parser.parse_args(argv)

    configureLogging(level='INFO')
    log = getLogger('orderstream.publisher')

    try:
        config = loadConfig(args.config)
    except ConfigError as e:
        log.error(str(e))
        return 2

    transportConfig = config['transport']
    uri = args.uri or transportConfig['uri']
    subject = args.subject or transportConfig['subject']

    try:
        data = Path(args.file).read_bytes()
    except OSError as e:
        log.error(f'{args.file} is not readable: {e}')
        return 1

    try:
        orderId = asyncio.run(publishDocument(data, uri, subject, config['idField'], transportConfig.get('stream')))
    except NormalizationError as e:
        log.error(f'{args.file} rejected: {e}')
        return 1
    except Exception as e:
        log.error(f'Publish failed: {e}', exc_info=True)
        return 1

    log.info(f'Published {args.file} to subject: {subject}', orderId=orderId)

    return 0


if __name__ == '__main__':
    sys.exit(main())
