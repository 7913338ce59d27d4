"""
Rate Limiter Module

Redis-backed admission control: fixed window, sliding window and token
bucket limiters sharing one is_allowed(client_id) contract.
"""

from .exceptions import (
    ConfigurationError,
    ContentionError,
    ProtocolError,
    RateLimiterError,
    StoreUnavailableError,
)
from .limiter import (
    FixedWindowRateLimiter,
    RateLimiter,
    SlidingWindowRateLimiter,
    TokenBucketRateLimiter,
)
from .store import Batch, RedisCounterStore, get_redis_client

__all__ = [
    'Batch',
    'ConfigurationError',
    'ContentionError',
    'FixedWindowRateLimiter',
    'ProtocolError',
    'RateLimiter',
    'RateLimiterError',
    'RedisCounterStore',
    'SlidingWindowRateLimiter',
    'StoreUnavailableError',
    'TokenBucketRateLimiter',
    'get_redis_client',
]
