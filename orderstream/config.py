"""
orderstream configuration loading.

Order of precedence (last wins):
    1. Built-in defaults (DEFAULT_CONFIG)
    2. JSON config file (sections are merged key by key)
    3. .env file in the working directory (python-dotenv, never overrides real env)
    4. Environment: NATS_URL, NATS_SUBJECT, NATS_CLIENT_ID, DB_PATH, HTTP_ADDR
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Optional

import orjson
from dotenv import load_dotenv

from orderstream.core.contract import (
    DEFAULT_ID_FIELD, DEFAULT_LIST_LIMIT, DEFAULT_SUBJECT, DEFAULT_DURABLE_NAME,
    DEFAULT_ACK_WAIT_SECONDS, DEFAULT_MAX_IN_FLIGHT, DEFAULT_SHUTDOWN_GRACE_SECONDS
)


DEFAULT_CONFIG_PATH = 'orderstream/config.json'

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

DEFAULT_CONFIG = {
    'dbPath': 'data/orders.db',
    'idField': DEFAULT_ID_FIELD,
    'transport': {
        'uri': 'nats://127.0.0.1:4222',
        'name': 'order-ingest-1',
        'subject': DEFAULT_SUBJECT,
        'stream': 'ORDERS',
        'durableName': DEFAULT_DURABLE_NAME,
        'ackWaitSeconds': DEFAULT_ACK_WAIT_SECONDS,
    },
    'ingest': {
        'maxInFlight': DEFAULT_MAX_IN_FLIGHT,
        'shutdownGraceSeconds': DEFAULT_SHUTDOWN_GRACE_SECONDS,
    },
    'warmStart': {
        # False boots with an empty/partial cache when the store cannot be read
        'failOnError': False,
        'limit': None,
    },
    'server': {
        'host': '0.0.0.0',
        'port': 8080,
        'listLimit': DEFAULT_LIST_LIMIT,
    },
    'logging': {
        'level': 'INFO',
        'dir': None,
        'console': True,
    },
}


class ConfigError(Exception):
    """Invalid configuration file or value"""
    pass


def loadConfig(configPath: Optional[str | Path] = None, env: Optional[dict] = None,
               loadDotenv: bool = True) -> dict:
    """
    Build the effective configuration.

    Args:
        configPath: JSON config file; None uses only defaults + environment
        env: Environment mapping (defaults to os.environ)
        loadDotenv: Load ./.env into os.environ first

    Returns:
        Validated config dict

    Raises:
        ConfigError: Unreadable file, invalid JSON, or invalid values
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if configPath is not None:
        path = Path(configPath)
        try:
            fileConfig = orjson.loads(path.read_bytes())
        except OSError as e:
            raise ConfigError(f"Config file not readable: {path}: {e}")
        except orjson.JSONDecodeError as e:
            raise ConfigError(f"Config file is not valid JSON: {path}: {e}")
        if not isinstance(fileConfig, dict):
            raise ConfigError(f"Config file must hold a JSON object: {path}")
        _merge(config, fileConfig)

    if loadDotenv:
        load_dotenv()
    _applyEnv(config, os.environ if env is None else env)

    _validate(config)
    return config


def _merge(base: dict, override: dict):
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def _applyEnv(config: dict, env):

    def get(key: str) -> Optional[str]:
        value = (env.get(key) or '').strip()
        return value or None

    if get('NATS_URL'):
        config['transport']['uri'] = get('NATS_URL')
    if get('NATS_SUBJECT'):
        config['transport']['subject'] = get('NATS_SUBJECT')
    if get('NATS_CLIENT_ID'):
        config['transport']['name'] = get('NATS_CLIENT_ID')
    if get('DB_PATH'):
        config['dbPath'] = get('DB_PATH')

    httpAddr = get('HTTP_ADDR')
    if httpAddr:
        host, sep, port = httpAddr.rpartition(':')
        if not sep:
            raise ConfigError(f"HTTP_ADDR must be host:port or :port, got {httpAddr!r}")
        try:
            config['server']['port'] = int(port)
        except ValueError:
            raise ConfigError(f"HTTP_ADDR port is not a number: {httpAddr!r}")
        config['server']['host'] = host or '0.0.0.0'


def _validate(config: dict):
    for section in ('transport', 'ingest', 'warmStart', 'server', 'logging'):
        if not isinstance(config.get(section), dict):
            raise ConfigError(f"Missing '{section}' section")

    if not isinstance(config['dbPath'], str) or not config['dbPath']:
        raise ConfigError("dbPath must be a non-empty string")
    if not isinstance(config['idField'], str) or not config['idField']:
        raise ConfigError("idField must be a non-empty string")

    transport = config['transport']
    for key in ('uri', 'subject', 'durableName'):
        if not isinstance(transport.get(key), str) or not transport[key]:
            raise ConfigError(f"transport.{key} must be a non-empty string")
    _requirePositive(transport, 'ackWaitSeconds', 'transport')

    _requirePositive(config['ingest'], 'maxInFlight', 'ingest', integer=True)
    _requirePositive(config['ingest'], 'shutdownGraceSeconds', 'ingest', allowZero=True)

    warm = config['warmStart']
    if not isinstance(warm.get('failOnError'), bool):
        raise ConfigError("warmStart.failOnError must be true or false")
    if warm.get('limit') is not None:
        _requirePositive(warm, 'limit', 'warmStart', integer=True)

    _requirePositive(config['server'], 'port', 'server', integer=True)
    _requirePositive(config['server'], 'listLimit', 'server', integer=True)

    level = config['logging'].get('level')
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")


def _requirePositive(section: dict, key: str, name: str, integer: bool = False, allowZero: bool = False):
    value = section.get(key)
    kinds = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, kinds) or value < 0 or (value == 0 and not allowZero):
        raise ConfigError(f"{name}.{key} must be a positive {'integer' if integer else 'number'}, got {value!r}")
