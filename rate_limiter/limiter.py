"""
Core Rate Limiter Implementation

Three admission algorithms sharing one contract, is_allowed(client_id).
All state lives in Redis under "<prefix>:<algorithm>:<client_id>", so any
number of stateless instances can share the same budgets.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable, Optional

from . import config
from .exceptions import ConfigurationError, ProtocolError
from .store import Batch, RedisCounterStore

logger = logging.getLogger(__name__)

# Well under the largest EX redis accepts (ms expiry must fit a signed 64-bit int)
MAX_TTL_SECONDS = 10 ** 15


def _positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return value


def _positive_number(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a positive number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive number, got {value!r}")
    return value


def _parse_int(raw: Optional[str], key: str, default: Optional[int] = None) -> int:
    if raw is None and default is not None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ProtocolError(f"Non-integer value {raw!r} stored at {key!r}")


class RateLimiter(ABC):
    """
    Decides whether a client's request is admitted.

    Args:
        store: shared counter store the limiter keeps its state in
        key_prefix: namespace for the keys this limiter owns
        clock: returns the current time in epoch seconds
    """

    algorithm = ''

    def __init__(self, store: RedisCounterStore, key_prefix: str = config.KEY_PREFIX,
                 clock: Callable[[], float] = time.time):
        if store is None:
            raise ConfigurationError("A counter store is required")
        self.store = store
        self.key_prefix = key_prefix
        self._clock = clock

    def key(self, client_id: str) -> str:
        if not isinstance(client_id, str) or not client_id:
            raise ValueError(f"client_id must be a non-empty string, got {client_id!r}")
        return f"{self.key_prefix}:{self.algorithm}:{client_id}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @abstractmethod
    def is_allowed(self, client_id: str) -> bool:
        """
        Returns True if the request is admitted, False if it is rejected.

        Raises:
            StoreUnavailableError: Redis could not be reached
            ProtocolError: Redis returned an unusable answer
            ContentionError: the transaction kept losing races
        """


class FixedWindowRateLimiter(RateLimiter):
    """
    Counts requests per client in a window of window_seconds that opens with
    the client's first admitted request and closes when its TTL runs out.
    """

    algorithm = 'fixed-window'

    def __init__(self, store: RedisCounterStore, window_seconds: int, limit: int, **kwargs):
        super().__init__(store, **kwargs)
        self.window_seconds = _positive_int('window_seconds', window_seconds)
        self.limit = _positive_int('limit', limit)

    def is_allowed(self, client_id: str) -> bool:
        key = self.key(client_id)

        def decide(view):
            count = _parse_int(view.get(key), key, default=0)
            batch = Batch()
            if count >= self.limit:
                return False, batch
            # NX: only the first hit of a window arms the TTL
            batch.incr(key).expire(key, self.window_seconds, nx=True)
            return True, batch

        allowed, _ = self.store.atomic([key], decide)
        logger.debug("fixed-window %s -> %s", key, 'allow' if allowed else 'deny')
        return allowed


class SlidingWindowRateLimiter(RateLimiter):
    """
    Approximates a rolling window with window_seconds / sub_window_seconds
    buckets kept as fields of one hash per client. Each bucket expires
    window_seconds after its first write, so old buckets age out on their own.
    """

    algorithm = 'sliding-window'

    def __init__(self, store: RedisCounterStore, window_seconds: int, sub_window_seconds: int,
                 limit: int, **kwargs):
        super().__init__(store, **kwargs)
        self.window_seconds = _positive_int('window_seconds', window_seconds)
        self.sub_window_seconds = _positive_int('sub_window_seconds', sub_window_seconds)
        self.limit = _positive_int('limit', limit)
        if window_seconds % sub_window_seconds:
            raise ConfigurationError(
                f"window_seconds ({window_seconds}) must be a multiple of "
                f"sub_window_seconds ({sub_window_seconds})"
            )
        self.sub_windows = window_seconds // sub_window_seconds

    def current_sub_window(self) -> int:
        return self._now_ms() // (self.sub_window_seconds * 1000)

    def is_allowed(self, client_id: str) -> bool:
        key = self.key(client_id)

        def decide(view):
            total = sum(_parse_int(count, key) for count in view.hgetall(key).values())
            batch = Batch()
            if total >= self.limit:
                return False, batch
            field = str(self.current_sub_window())
            batch.hincrby(key, field, 1).hexpire(key, self.window_seconds, field, nx=True)
            return True, batch

        # An empty EXEC result for the queued writes raises ProtocolError in the store
        allowed, _ = self.store.atomic([key], decide)
        logger.debug("sliding-window %s -> %s", key, 'allow' if allowed else 'deny')
        return allowed


class TokenBucketRateLimiter(RateLimiter):
    """
    Bucket of up to capacity tokens refilled at refill_rate tokens per second.
    Refill is computed lazily on each call from the time since lastRefill.
    """

    algorithm = 'token-bucket'

    def __init__(self, store: RedisCounterStore, capacity: int, refill_rate: float, **kwargs):
        super().__init__(store, **kwargs)
        self.capacity = _positive_int('capacity', capacity)
        self.refill_rate = _positive_number('refill_rate', refill_rate)
        self._rate = Decimal(str(refill_rate))
        # An idle bucket is full again after this long, which is what absence means
        idle_seconds = capacity / refill_rate
        if not math.isfinite(idle_seconds) or idle_seconds > MAX_TTL_SECONDS:
            raise ConfigurationError(
                f"refill_rate {refill_rate!r} is too small for capacity {capacity}: "
                f"a bucket would take {idle_seconds} seconds to refill"
            )
        self.idle_ttl = math.ceil(idle_seconds)

    def keys(self, client_id: str):
        base = self.key(client_id)
        return f"{base}:count", f"{base}:lastRefill"

    def tokens_to_add(self, elapsed_ms: int) -> int:
        if elapsed_ms <= 0:
            return 0
        return int(Decimal(elapsed_ms) * self._rate / 1000)

    def is_allowed(self, client_id: str) -> bool:
        count_key, last_refill_key = self.keys(client_id)

        def decide(view):
            now_ms = self._now_ms()
            last_raw, tokens_raw = view.mget(last_refill_key, count_key)
            last_refill = _parse_int(last_raw, last_refill_key, default=now_ms)
            tokens = _parse_int(tokens_raw, count_key, default=self.capacity)

            tokens = min(self.capacity, tokens + self.tokens_to_add(now_ms - last_refill))
            allowed = tokens > 0
            if allowed:
                tokens -= 1

            # lastRefill moves forward on denials too
            batch = Batch()
            batch.set(count_key, tokens, ttl=self.idle_ttl)
            batch.set(last_refill_key, max(now_ms, last_refill), ttl=self.idle_ttl)
            return allowed, batch

        allowed, _ = self.store.atomic([count_key, last_refill_key], decide)
        logger.debug("token-bucket %s -> %s", count_key, 'allow' if allowed else 'deny')
        return allowed
