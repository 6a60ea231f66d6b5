"""
tracegate.ratelimit.stores

Shared counter/record store used by the rate limiter and the record sinks.

Responsibilities:
- Define the `CounterStore` interface (increment/get/append/read/evict).
- `InMemoryCounterStore`: process-local, lock-striped, for tests and single-instance runs.
- `RedisCounterStore`: shared store for multi-instance deployments.

`increment` is the only write path for counters and is atomic per key: concurrent calls
never lose an update and never reset the same window twice.
"""

from __future__ import annotations

import json
import threading
import zlib
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from tracegate.errors import StoreUnavailableError


@dataclass(frozen=True, slots=True)
class WindowCount:
    count: int
    window_start: float


class CounterStore(Protocol):
    async def increment(self, key: str, *, window_seconds: float, now: float) -> WindowCount: ...

    async def get(self, key: str, *, now: float) -> WindowCount | None: ...

    async def append(self, stream: str, record: Mapping[str, Any]) -> None: ...

    async def read(self, stream: str, *, limit: int) -> list[dict[str, Any]]: ...

    async def evict_idle(self, *, now: float) -> int: ...

    async def close(self) -> None: ...


@dataclass(slots=True)
class _Bucket:
    count: int
    window_start: float
    window_seconds: float
    last_seen: float


class InMemoryCounterStore:
    """
    Counters are sharded over a fixed set of locks (one lock per key hash bucket), so two
    keys rarely contend and the same key is always serialized.
    """

    def __init__(
        self,
        *,
        stripes: int = 64,
        stream_maxlen: int = 10_000,
        sweep_every: int = 1_000,
    ) -> None:
        self._buckets: dict[str, _Bucket] = {}
        self._locks = tuple(threading.Lock() for _ in range(stripes))
        self._streams: dict[str, deque[dict[str, Any]]] = {}
        self._streams_lock = threading.Lock()
        self._stream_maxlen = stream_maxlen
        self._sweep_every = sweep_every
        self._ops = 0

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    async def increment(self, key: str, *, window_seconds: float, now: float) -> WindowCount:
        with self._lock_for(key):
            bucket = self._buckets.get(key)
            if bucket is None or now - bucket.window_start >= window_seconds:
                bucket = _Bucket(1, now, window_seconds, now)
                self._buckets[key] = bucket
            else:
                bucket.count += 1
                bucket.last_seen = now
            result = WindowCount(bucket.count, bucket.window_start)

        self._ops += 1
        if self._ops % self._sweep_every == 0:
            await self.evict_idle(now=now)
        return result

    async def get(self, key: str, *, now: float) -> WindowCount | None:
        with self._lock_for(key):
            bucket = self._buckets.get(key)
            if bucket is None or now - bucket.window_start >= bucket.window_seconds:
                return None
            return WindowCount(bucket.count, bucket.window_start)

    async def append(self, stream: str, record: Mapping[str, Any]) -> None:
        with self._streams_lock:
            buf = self._streams.get(stream)
            if buf is None:
                buf = deque(maxlen=self._stream_maxlen)
                self._streams[stream] = buf
            buf.append(dict(record))

    async def read(self, stream: str, *, limit: int) -> list[dict[str, Any]]:
        # Newest first, matching the database sink ordering.
        with self._streams_lock:
            buf = self._streams.get(stream, ())
            return [dict(r) for r in list(buf)[-limit:]][::-1] if limit > 0 else []

    async def evict_idle(self, *, now: float) -> int:
        # A bucket idle for a full window holds no information: its next hit starts a new one.
        evicted = 0
        for key in list(self._buckets):
            with self._lock_for(key):
                bucket = self._buckets.get(key)
                if bucket is not None and now - bucket.last_seen >= bucket.window_seconds:
                    del self._buckets[key]
                    evicted += 1
        return evicted

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._buckets)


# KEYS[1] = bucket hash; ARGV[1] = now (seconds, float), ARGV[2] = window (seconds, float).
_INCREMENT_LUA = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local start = redis.call('HGET', KEYS[1], 'start')
if (not start) or (now - tonumber(start) >= window) then
  redis.call('HSET', KEYS[1], 'start', ARGV[1], 'count', 1)
  redis.call('PEXPIRE', KEYS[1], math.ceil(window * 1000))
  return {1, ARGV[1]}
end
local count = redis.call('HINCRBY', KEYS[1], 'count', 1)
return {count, start}
"""


class RedisCounterStore:
    """
    Window roll and increment happen inside one Lua script, so they are atomic across
    every gateway instance. Bucket keys expire one window after they start.
    """

    def __init__(
        self,
        client: Redis,
        *,
        prefix: str = "tracegate:",
        stream_maxlen: int = 100_000,
    ) -> None:
        self._redis = client
        self._prefix = prefix
        self._stream_maxlen = stream_maxlen
        self._increment = client.register_script(_INCREMENT_LUA)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisCounterStore:
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    async def increment(self, key: str, *, window_seconds: float, now: float) -> WindowCount:
        try:
            count, start = await self._increment(
                keys=[self._prefix + "rl:" + key], args=[repr(now), repr(window_seconds)]
            )
        except RedisError as e:
            raise StoreUnavailableError("rate-limit store unavailable") from e
        return WindowCount(int(count), float(start))

    async def get(self, key: str, *, now: float) -> WindowCount | None:
        try:
            raw = await self._redis.hgetall(self._prefix + "rl:" + key)
        except RedisError as e:
            raise StoreUnavailableError("rate-limit store unavailable") from e
        if not raw:
            return None
        return WindowCount(int(raw["count"]), float(raw["start"]))

    async def append(self, stream: str, record: Mapping[str, Any]) -> None:
        try:
            await self._redis.xadd(
                self._prefix + "stream:" + stream,
                {"record": json.dumps(dict(record), default=str)},
                maxlen=self._stream_maxlen,
                approximate=True,
            )
        except RedisError as e:
            raise StoreUnavailableError("record stream unavailable") from e

    async def read(self, stream: str, *, limit: int) -> list[dict[str, Any]]:
        if limit <= 0:
            return []
        try:
            rows = await self._redis.xrevrange(self._prefix + "stream:" + stream, count=limit)
        except RedisError as e:
            raise StoreUnavailableError("record stream unavailable") from e
        return [json.loads(fields["record"]) for _, fields in rows]

    async def evict_idle(self, *, now: float) -> int:
        # Redis expires idle buckets on its own (PEXPIRE at window start).
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


# --- Module Notes -----------------------------------------------------------
# The in-memory store's critical sections never await, so they are also atomic with
# respect to other asyncio tasks; the thread locks cover worker-thread callers.
