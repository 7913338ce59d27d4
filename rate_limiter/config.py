"""
Rate Limiter Configuration

Redis connection settings and limiter defaults, read from the environment
(or a local .env file).
"""

import os
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()

_TRUTHY = {'1', 'true', 'yes', 'on'}
_FALSY = {'0', 'false', 'no', 'off', ''}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
REDIS_PORT = env_int('REDIS_PORT', 6379)
REDIS_DB = env_int('REDIS_DB', 0)
REDIS_PASSWORD: Optional[str] = os.getenv('REDIS_PASSWORD') or None
REDIS_SSL = env_bool('REDIS_SSL', False)
REDIS_SOCKET_TIMEOUT = env_float('REDIS_SOCKET_TIMEOUT', 5.0)

# Namespace for every key the limiters write: "<prefix>:<algorithm>:<client>"
KEY_PREFIX = os.getenv('RATE_LIMIT_KEY_PREFIX', 'rate-limit')

# Attempts per decision before giving up on a contended WATCH transaction
MAX_RETRIES = env_int('RATE_LIMIT_MAX_RETRIES', 5)
