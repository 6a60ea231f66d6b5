from __future__ import annotations

import asyncio

import pytest

from tracegate.ratelimit.limiter import RateLimiter, RateLimitTier, TierPolicy
from tracegate.ratelimit.stores import InMemoryCounterStore

T = RateLimitTier


def _limiter(clock, **overrides: TierPolicy) -> RateLimiter:
    policies = {tier: TierPolicy(100, 900) for tier in T}
    policies.update({T[name]: policy for name, policy in overrides.items()})
    return RateLimiter(store=InMemoryCounterStore(), policies=policies, clock=clock)


@pytest.mark.asyncio
async def test_sixth_call_in_window_is_denied_and_window_resets(clock) -> None:
    limiter = _limiter(clock, general=TierPolicy(5, 60))
    first_at = clock.now

    for _ in range(5):
        assert (await limiter.allow("ip:198.51.100.1", T.general)).allowed
        clock.advance(2)

    denied = await limiter.allow("ip:198.51.100.1", T.general)
    assert not denied.allowed
    assert denied.retry_after == 50  # 60s window opened 10s ago
    assert denied.remaining == 0

    clock.now = first_at + 61
    reset = await limiter.allow("ip:198.51.100.1", T.general)
    assert reset.allowed
    assert reset.count == 1
    assert reset.window_start == first_at + 61


@pytest.mark.asyncio
async def test_identities_and_tiers_are_independent(clock) -> None:
    limiter = _limiter(clock, general=TierPolicy(1, 60))
    assert (await limiter.allow("ip:a", T.general)).allowed
    assert not (await limiter.allow("ip:a", T.general)).allowed
    assert (await limiter.allow("ip:b", T.general)).allowed
    assert (await limiter.allow("ip:a", T.api)).allowed


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(clock) -> None:
    limiter = _limiter(clock)
    results = await asyncio.gather(*(limiter.allow("sub:u1", T.general) for _ in range(50)))

    assert all(r.allowed for r in results)
    assert sorted(r.count for r in results) == list(range(1, 51))
    stored = await limiter.store.get("general:sub:u1", now=clock.now)
    assert stored is not None and stored.count == 50


@pytest.mark.asyncio
async def test_every_applicable_tier_is_incremented_even_after_a_deny(clock) -> None:
    limiter = _limiter(clock, auth=TierPolicy(2, 900))
    tiers = (T.auth, T.api, T.general)

    for _ in range(2):
        assert (await limiter.check("ip:a", tiers)).allowed
    denied = await limiter.check("ip:a", tiers)
    assert not denied.allowed
    assert denied.tier is T.auth

    for tier in (T.api, T.general):
        stored = await limiter.store.get(f"{tier.value}:ip:a", now=clock.now)
        assert stored is not None and stored.count == 3


@pytest.mark.asyncio
async def test_longest_retry_wins_among_denials(clock) -> None:
    limiter = _limiter(clock, auth=TierPolicy(1, 900), api=TierPolicy(1, 60))
    await limiter.check("ip:a", (T.api, T.auth))
    denied = await limiter.check("ip:a", (T.api, T.auth))
    assert denied.tier is T.auth
    assert denied.retry_after == 900


@pytest.mark.asyncio
async def test_least_headroom_is_reported_when_allowed(clock) -> None:
    limiter = _limiter(clock, api=TierPolicy(3, 60))
    decision = await limiter.check("ip:a", (T.general, T.api))
    assert decision.allowed
    assert decision.tier is T.api
    assert decision.remaining == 2


@pytest.mark.asyncio
async def test_no_tiers_means_no_decision(clock) -> None:
    assert await _limiter(clock).check("ip:a", ()) is None


def test_policy_validation() -> None:
    with pytest.raises(ValueError):
        TierPolicy(0, 60)
    with pytest.raises(ValueError):
        RateLimiter(store=InMemoryCounterStore(), policies={T.general: TierPolicy(1, 1)})
