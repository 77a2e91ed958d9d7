"""
SDK Logging - hierarchical structured logger.

API:
    from sdk.logging import getLogger, configureLogging

    configureLogging(logDir='logs', level='INFO')   # once, at process start

    log = getLogger()                 # module-level: 'orderstream.publisher'
    log.info("Published", subject='orders', bytes=512)
"""

from .logger import getLogger, configureLogging, StructuredFormatter

__all__ = [
    'getLogger',
    'configureLogging',
    'StructuredFormatter'
]
