from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tracegate.errors import StoreUnavailableError
from tracegate.ratelimit.stores import InMemoryCounterStore, RedisCounterStore


@pytest.mark.asyncio
async def test_window_rolls_over_after_window_seconds() -> None:
    store = InMemoryCounterStore()
    assert (await store.increment("k", window_seconds=60, now=0.0)).count == 1
    assert (await store.increment("k", window_seconds=60, now=30.0)).count == 2

    rolled = await store.increment("k", window_seconds=60, now=60.0)
    assert rolled.count == 1
    assert rolled.window_start == 60.0

    assert await store.get("k", now=119.0) is not None
    assert await store.get("k", now=120.0) is None


@pytest.mark.asyncio
async def test_idle_buckets_are_evicted() -> None:
    store = InMemoryCounterStore()
    await store.increment("idle", window_seconds=60, now=0.0)
    await store.increment("busy", window_seconds=60, now=0.0)
    await store.increment("busy", window_seconds=60, now=50.0)

    assert await store.evict_idle(now=59.0) == 0
    assert await store.evict_idle(now=60.0) == 1
    assert len(store) == 1
    assert await store.evict_idle(now=110.0) == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_streams_read_newest_first_and_are_bounded() -> None:
    store = InMemoryCounterStore(stream_maxlen=3)
    for n in range(5):
        await store.append("audit", {"n": n})

    assert await store.read("audit", limit=2) == [{"n": 4}, {"n": 3}]
    assert await store.read("audit", limit=10) == [{"n": 4}, {"n": 3}, {"n": 2}]
    assert await store.read("missing", limit=10) == []
    assert await store.read("audit", limit=0) == []


class _ScriptedRedis:
    """
    Records script invocations; returns a canned reply.
    """

    def __init__(self, reply=None, error: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self._reply = reply
        self._error = error

    def register_script(self, _source: str):
        async def run(keys=None, args=None):
            self.calls.append({"keys": keys, "args": args})
            if self._error is not None:
                raise self._error
            return self._reply

        return run

    async def aclose(self) -> None:
        return None


@pytest.mark.asyncio
async def test_redis_store_runs_one_script_per_increment() -> None:
    client = _ScriptedRedis(reply=[3, "100.5"])
    store = RedisCounterStore(client, prefix="t:")

    wc = await store.increment("general:ip:a", window_seconds=60.0, now=120.25)

    assert wc.count == 3
    assert wc.window_start == 100.5
    assert client.calls == [{"keys": ["t:rl:general:ip:a"], "args": ["120.25", "60.0"]}]


@pytest.mark.asyncio
async def test_redis_errors_surface_as_store_unavailable() -> None:
    store = RedisCounterStore(_ScriptedRedis(error=RedisConnectionError("down")))
    with pytest.raises(StoreUnavailableError):
        await store.increment("general:ip:a", window_seconds=60.0, now=1.0)
