"""
Hierarchical structured logger for orderstream services.

Features:
- Logger name auto-detected from the caller (module + class), computed once
- Keyword arguments become structured fields: log.info("Saved", orderId=oid)
- Optional rotating log file per application with a global disk cap
- Console output by default

Usage:
    from sdk.logging import getLogger, configureLogging

    configureLogging(logDir='logs', level='INFO')   # once, at process start

    class IngestionSubscriber:
        def __init__(self):
            self.log = getLogger()   # 'orderstream.core.subscriber.IngestionSubscriber'

Property of Uncompromising Sensors LLC.
"""

# Imports
import inspect, logging, logging.handlers, socket
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone as tz


# Global state
_hostname = socket.gethostname()
_configured = False
_fileHandlers = {}  # logPath -> handler (shared across loggers of one app)
_config = {
    'logDir': None,                 # None = console only
    'maxBytes': 10_000_000,
    'backupCount': 5,
    'maxTotalMb': 2048,
    'console': True,
    'level': logging.INFO,
    'utc': False
}

# LogRecord attributes that are never rendered as structured fields
_RESERVED = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName',
    'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'hostname', 'asctime', 'taskName'
}


def configureLogging(logDir: Optional[str] = None, maxBytes: int = 10_000_000,
                     backupCount: int = 5, maxTotalMb: int = 2048,
                     console: bool = True, level: str = 'INFO', utc: bool = False):
    """
    Configure global logging settings (call once at process startup).

    Args:
        logDir: Directory for rotating log files (None disables file output)
        maxBytes: Size per log file before rotation
        backupCount: Rotated files kept per application
        maxTotalMb: Cap on total log disk usage, enforced on rollover
        console: Also log to stderr
        level: Minimum level name ('DEBUG', 'INFO', ...)
        utc: Render timestamps in UTC
    """
    global _configured

    levelNo = getattr(logging, str(level).upper(), None)
    if not isinstance(levelNo, int):
        raise ValueError(f"Unknown log level: {level}")

    _config.update({'logDir': logDir, 'maxBytes': maxBytes, 'backupCount': backupCount,
                    'maxTotalMb': maxTotalMb, 'console': console, 'level': levelNo, 'utc': utc})

    if logDir:
        Path(logDir).mkdir(parents=True, exist_ok=True)

    # Loggers created before configuration pick up the new level
    for handler in _fileHandlers.values():
        handler.setLevel(levelNo)
    for logger in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(logger, logging.Logger) and getattr(logger, '_configuredBySdk', False):
            logger.setLevel(levelNo)

    _configured = True


def _autoDetectName() -> str:
    """Walk the call stack to the first frame outside sdk.logging. Returns 'module.path.ClassName'."""
    frame = inspect.currentframe()
    try:
        current = frame
        while current is not None:
            current = current.f_back
            if current is None:
                break

            module = inspect.getmodule(current)
            if module is None:
                continue

            moduleName = module.__name__
            if moduleName.startswith('sdk.logging') or moduleName.startswith('importlib'):
                continue
            if moduleName == '__main__':
                moduleName = 'orderstream'

            parts = moduleName.split('.')
            if parts and parts[0] == 'sdk':
                parts = parts[1:]

            className = None
            if 'self' in current.f_locals:
                className = current.f_locals['self'].__class__.__name__
            elif 'cls' in current.f_locals and isinstance(current.f_locals['cls'], type):
                className = current.f_locals['cls'].__name__

            hierarchy = '.'.join(parts) if parts else 'unknown'
            if className:
                hierarchy = f"{hierarchy}.{className}"
            return hierarchy

        return 'unknown'
    finally:
        del frame


class StructuredFormatter(logging.Formatter):
    """Format: timestamp - hostname - logger - level - message [field=value, ...]"""

    def __init__(self, fmt=None, datefmt=None, utc=False):
        super().__init__(fmt, datefmt)
        self.utc = utc

    def formatTime(self, record, datefmt=None):
        if self.utc:
            ct = datetime.fromtimestamp(record.created, tz=tz.utc)
        else:
            ct = datetime.fromtimestamp(record.created)

        if datefmt:
            return ct.strftime(datefmt)
        return f"{ct.strftime('%Y-%m-%d %H:%M:%S')},{int(record.msecs):03d}"

    def format(self, record):
        record.hostname = _hostname

        fields = [f"{key}={value}" for key, value in record.__dict__.items()
                  if key not in _RESERVED and not key.startswith('_')]

        # Render on a copy of msg so other handlers see the original
        originalMsg = record.msg
        if fields:
            record.msg = f"{originalMsg} [{', '.join(fields)}]"
        try:
            return super().format(record)
        finally:
            record.msg = originalMsg


class DiskCappedFileHandler(logging.handlers.RotatingFileHandler):
    """RotatingFileHandler that enforces the global disk cap after each rollover."""

    def doRollover(self):
        super().doRollover()
        _enforceDiskLimit()


def getLogger(name: Optional[str] = None, separateFile: bool = False) -> logging.Logger:
    """
    Get or create a logger with automatic hierarchy detection.

    Stack inspection happens once per call; keep the returned logger on the
    instance or module rather than calling getLogger() per message.

    Args:
        name: Logger name (auto-detected from the caller if None)
        separateFile: Give this logger its own file instead of the app-wide one

    Returns:
        logging.Logger whose debug/info/warning/error/critical accept **fields
    """
    if not _configured:
        configureLogging()

    if name is None:
        name = _autoDetectName()

    logger = logging.getLogger(name)
    logger.propagate = False

    if not getattr(logger, '_configuredBySdk', False):
        logger.setLevel(_config['level'])

        if _config['logDir']:
            logFilename = f"{name}.log" if separateFile else f"{name.split('.')[0]}.log"
            logPath = str(Path(_config['logDir']) / logFilename)

            if logPath not in _fileHandlers:
                fileHandler = DiskCappedFileHandler(
                    logPath,
                    maxBytes=_config['maxBytes'],
                    backupCount=_config['backupCount'],
                    encoding='utf-8'
                )
                fileHandler.setLevel(_config['level'])
                fileHandler.setFormatter(StructuredFormatter(
                    '%(asctime)s - %(hostname)s - %(name)s - %(levelname)s - %(message)s',
                    utc=_config['utc']
                ))
                _fileHandlers[logPath] = fileHandler

            logger.addHandler(_fileHandlers[logPath])

        if _config['console']:
            consoleHandler = logging.StreamHandler()
            consoleHandler.setFormatter(StructuredFormatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                utc=_config['utc']
            ))
            logger.addHandler(consoleHandler)

        logger._configuredBySdk = True

    return _wrapLogger(logger)


def _wrapLogger(logger: logging.Logger) -> logging.Logger:
    """Replace the level methods so that keyword arguments become `extra` fields."""
    if getattr(logger, '_isWrapped', False):
        return logger

    def wrap(original):
        def method(msg, *args, **kwargs):
            excInfo = kwargs.pop('exc_info', False)
            if kwargs:
                original(msg, *args, extra=kwargs, exc_info=excInfo)
            else:
                original(msg, *args, exc_info=excInfo)
        method.__name__ = original.__name__
        return method

    logger.debug = wrap(logger.debug)
    logger.info = wrap(logger.info)
    logger.warning = wrap(logger.warning)
    logger.error = wrap(logger.error)
    logger.critical = wrap(logger.critical)
    logger._isWrapped = True

    return logger


def _enforceDiskLimit():
    """Delete the oldest log files until total usage is under maxTotalMb."""
    if not _config['logDir']:
        return

    logDir = Path(_config['logDir'])
    maxBytes = _config['maxTotalMb'] * 1024 * 1024

    files = []
    totalSize = 0
    try:
        for filepath in logDir.rglob('*.log*'):
            if filepath.is_file():
                stat = filepath.stat()
                files.append((stat.st_mtime, stat.st_size, filepath))
                totalSize += stat.st_size
    except OSError:
        return

    if totalSize <= maxBytes:
        return

    files.sort(key=lambda x: x[0])
    for _, size, filepath in files:
        if totalSize <= maxBytes:
            break
        try:
            filepath.unlink()
            totalSize -= size
        except OSError:
            continue
