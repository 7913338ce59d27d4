"""
Shared fixtures: an in-memory stand-in for the subset of redis.Redis the
limiters use, driven by a fake clock so window and refill tests never sleep.
"""

import pytest
import redis

from rate_limiter.store import RedisCounterStore

START = 1_700_000_000


class FakeClock:
    """Callable clock returning epoch seconds; only moves when told to."""

    def __init__(self, start=START):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRedis:
    """
    Single-process model of the redis commands used by RedisCounterStore:
    strings, hashes, key TTLs, per-field hash TTLs, and WATCH versioning.
    """

    def __init__(self, clock):
        self.clock = clock
        self.data = {}
        self.expiry = {}
        self.field_expiry = {}
        self.versions = {}
        # One-shot callables run just before the next EXEC (simulate other instances)
        self.exec_hooks = []
        self.empty_exec = False
        self.exec_count = 0

    # -- bookkeeping --

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and self.clock() >= deadline:
            self._delete(key)
            return
        fields = self.field_expiry.get(key)
        if fields:
            for field, field_deadline in list(fields.items()):
                if self.clock() >= field_deadline:
                    del fields[field]
                    self.data[key].pop(field, None)
            if key in self.data and not self.data[key]:
                self._delete(key)

    def _delete(self, key):
        self.data.pop(key, None)
        self.expiry.pop(key, None)
        self.field_expiry.pop(key, None)

    def _touch(self, key):
        self.versions[key] = self.versions.get(key, 0) + 1

    def _hash(self, key):
        self._purge(key)
        value = self.data.setdefault(key, {})
        if not isinstance(value, dict):
            raise redis.ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")
        return value

    # -- commands --

    def ping(self):
        return True

    def get(self, name):
        self._purge(name)
        value = self.data.get(name)
        if isinstance(value, dict):
            raise redis.ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")
        return value

    def mget(self, keys, *args):
        return [self.get(key) for key in list(keys) + list(args)]

    def set(self, name, value, ex=None):
        self._delete(name)
        self.data[name] = str(value)
        if ex is not None:
            self.expiry[name] = self.clock() + ex
        self._touch(name)
        return True

    def incr(self, name, amount=1):
        current = self.get(name)
        try:
            value = int(current or 0) + amount
        except ValueError:
            raise redis.ResponseError("value is not an integer or out of range")
        self.data[name] = str(value)
        self._touch(name)
        return value

    def expire(self, name, time, nx=False):
        self._purge(name)
        if name not in self.data:
            return False
        if nx and name in self.expiry:
            return False
        self.expiry[name] = self.clock() + time
        self._touch(name)
        return True

    def ttl(self, name):
        self._purge(name)
        if name not in self.data:
            return -2
        if name not in self.expiry:
            return -1
        return round(self.expiry[name] - self.clock())

    def hgetall(self, name):
        self._purge(name)
        return dict(self.data.get(name) or {})

    def hincrby(self, name, key, amount=1):
        fields = self._hash(name)
        value = int(fields.get(key, 0)) + amount
        fields[key] = str(value)
        self._touch(name)
        return value

    def hexpire(self, name, seconds, *fields, nx=False):
        self._purge(name)
        stored = self.data.get(name) or {}
        deadlines = self.field_expiry.setdefault(name, {})
        results = []
        for field in fields:
            if field not in stored:
                results.append(-2)
            elif nx and field in deadlines:
                results.append(0)
            else:
                deadlines[field] = self.clock() + seconds
                results.append(1)
        self._touch(name)
        return results

    def httl(self, name, *fields):
        self._purge(name)
        stored = self.data.get(name) or {}
        deadlines = self.field_expiry.get(name, {})
        out = []
        for field in fields:
            if field not in stored:
                out.append(-2)
            elif field not in deadlines:
                out.append(-1)
            else:
                out.append(round(deadlines[field] - self.clock()))
        return out

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """WATCH puts the pipeline in immediate mode; MULTI starts buffering."""

    COMMANDS = {'get', 'mget', 'set', 'incr', 'expire', 'hgetall', 'hincrby', 'hexpire'}

    def __init__(self, redis_):
        self._redis = redis_
        self._watched = {}
        self._queue = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()

    def reset(self):
        self._watched = {}
        self._queue = None

    def watch(self, *names):
        for name in names:
            self._watched[name] = self._redis.versions.get(name, 0)

    def multi(self):
        self._queue = []

    def __getattr__(self, name):
        if name not in self.COMMANDS:
            raise AttributeError(name)
        command = getattr(self._redis, name)

        def call(*args, **kwargs):
            if self._queue is None:
                return command(*args, **kwargs)
            self._queue.append((command, args, kwargs))
            return self
        return call

    def execute(self):
        redis_ = self._redis
        if redis_.exec_hooks:
            redis_.exec_hooks.pop(0)()
        try:
            for name, version in self._watched.items():
                if redis_.versions.get(name, 0) != version:
                    raise redis.WatchError("Watched variable changed.")
            redis_.exec_count += 1
            results = [command(*args, **kwargs) for command, args, kwargs in self._queue or []]
            return [] if redis_.empty_exec else results
        finally:
            self.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def store(fake_redis):
    return RedisCounterStore(fake_redis, max_retries=3)
