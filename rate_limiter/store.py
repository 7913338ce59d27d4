"""
Shared Counter Store

Thin adapter over a redis-py client. Limiters never talk to redis directly:
they read state and queue writes through RedisCounterStore.atomic(), which
wraps the read-decide-write cycle in a WATCH/MULTI/EXEC transaction so that
instances racing on the same client key cannot both commit.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import redis

from . import config
from .exceptions import ConfigurationError, ContentionError, ProtocolError, StoreUnavailableError

logger = logging.getLogger(__name__)


def get_redis_client() -> redis.Redis:
    """
    Build a Redis client from the environment settings in config.
    """
    return redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD,
        ssl=config.REDIS_SSL,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
        decode_responses=True,
    )


def _text(value) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    return value


@contextmanager
def _translate_errors():
    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
        logger.error("Redis unavailable: %s", exc)
        raise StoreUnavailableError(f"Redis unavailable: {exc}") from exc
    except redis.exceptions.ResponseError as exc:
        logger.error("Redis rejected command: %s", exc)
        raise ProtocolError(f"Redis rejected command: {exc}") from exc
    except redis.exceptions.RedisError as exc:
        logger.error("Redis error: %s", exc)
        raise StoreUnavailableError(f"Redis error: {exc}") from exc


class Batch:
    """
    Write commands queued by a limiter decision, replayed inside MULTI/EXEC.

    Method names and keyword arguments follow redis-py so a batch can be
    applied to any pipeline as-is.
    """

    def __init__(self):
        self._commands: List[Tuple[str, tuple, dict]] = []

    def __len__(self):
        return len(self._commands)

    def set(self, key: str, value, ttl: Optional[int] = None) -> 'Batch':
        self._commands.append(('set', (key, str(value)), {'ex': ttl}))
        return self

    def incr(self, key: str) -> 'Batch':
        self._commands.append(('incr', (key,), {}))
        return self

    def expire(self, key: str, ttl: int, nx: bool = False) -> 'Batch':
        self._commands.append(('expire', (key, ttl), {'nx': nx}))
        return self

    def hincrby(self, key: str, field: str, amount: int = 1) -> 'Batch':
        self._commands.append(('hincrby', (key, field, amount), {}))
        return self

    def hexpire(self, key: str, ttl: int, field: str, nx: bool = False) -> 'Batch':
        self._commands.append(('hexpire', (key, ttl, field), {'nx': nx}))
        return self

    def apply(self, pipe) -> None:
        for name, args, kwargs in self._commands:
            getattr(pipe, name)(*args, **kwargs)


class _WatchedView:
    """Reads against a pipeline in WATCH mode; each call runs immediately."""

    def __init__(self, pipe):
        self._pipe = pipe

    def get(self, key: str) -> Optional[str]:
        return _text(self._pipe.get(key))

    def mget(self, *keys: str) -> List[Optional[str]]:
        return [_text(value) for value in self._pipe.mget(list(keys))]

    def hgetall(self, key: str) -> Dict[str, str]:
        return {_text(field): _text(value) for field, value in self._pipe.hgetall(key).items()}


class RedisCounterStore:
    """
    Counter store backed by Redis.

    Args:
        client: a redis.Redis (or compatible) client
        max_retries: transaction attempts per decision before ContentionError
    """

    def __init__(self, client, max_retries: int = config.MAX_RETRIES):
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 1:
            raise ConfigurationError(f"max_retries must be a positive integer, got {max_retries!r}")
        self._client = client
        self.max_retries = max_retries

    @classmethod
    def from_env(cls, **kwargs) -> 'RedisCounterStore':
        return cls(get_redis_client(), **kwargs)

    @property
    def client(self):
        return self._client

    def ping(self) -> bool:
        with _translate_errors():
            return bool(self._client.ping())

    def get(self, key: str) -> Optional[str]:
        with _translate_errors():
            return _text(self._client.get(key))

    def set(self, key: str, value, ttl: Optional[int] = None) -> None:
        with _translate_errors():
            self._client.set(key, str(value), ex=ttl)

    def incr(self, key: str) -> int:
        with _translate_errors():
            return int(self._client.incr(key))

    def expire(self, key: str, ttl: int, nx: bool = False) -> bool:
        with _translate_errors():
            return bool(self._client.expire(key, ttl, nx=nx))

    def hgetall(self, key: str) -> Dict[str, str]:
        with _translate_errors():
            return {_text(f): _text(v) for f, v in self._client.hgetall(key).items()}

    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        with _translate_errors():
            return int(self._client.hincrby(key, field, amount))

    def hexpire(self, key: str, ttl: int, field: str, nx: bool = False) -> int:
        """Returns the per-field HEXPIRE status (1 set, 0 skipped by NX, -2 no field)."""
        with _translate_errors():
            result = self._client.hexpire(key, ttl, field, nx=nx)
        if not result:
            raise ProtocolError(f"HEXPIRE on {key!r} returned no status for field {field!r}")
        return int(result[0])

    def atomic(
        self,
        keys: Iterable[str],
        decide: Callable[[_WatchedView], Tuple[Any, Batch]],
    ) -> Tuple[Any, List[Any]]:
        """
        Run one optimistic read-decide-write cycle over ``keys``.

        ``decide`` receives a view for reading the watched keys and returns
        ``(decision, batch)``. An empty batch commits nothing and yields
        ``(decision, [])``. Otherwise the batch runs in MULTI/EXEC and its
        result list is returned. If a watched key changes before EXEC the
        whole cycle is retried, up to ``max_retries`` times.
        """
        keys = list(keys)
        for attempt in range(1, self.max_retries + 1):
            with _translate_errors(), self._client.pipeline() as pipe:
                try:
                    pipe.watch(*keys)
                    decision, batch = decide(_WatchedView(pipe))
                    if not batch:
                        return decision, []
                    pipe.multi()
                    batch.apply(pipe)
                    results = pipe.execute()
                except redis.exceptions.WatchError:
                    logger.debug("Watched keys %s changed, retrying (attempt %d/%d)",
                                 keys, attempt, self.max_retries)
                    continue

            if not results:
                logger.error("Empty transaction result for keys %s", keys)
                raise ProtocolError(f"Empty transaction result from Redis for keys {keys}")
            return decision, list(results)

        logger.error("Transaction on %s abandoned after %d attempts", keys, self.max_retries)
        raise ContentionError(keys, self.max_retries)
