"""
tracegate.ratelimit.limiter

Multi-tier fixed-window rate limiting.

Responsibilities:
- Hold the per-tier (limit, window) policy.
- `allow(identity, tier)`: one fixed-window check against the shared store.
- `check(identity, tiers)`: increment every applicable tier, most restrictive result wins.

Fixed windows (not sliding/token bucket) keep decisions simple to audit: a window opens on
the first hit, counts every hit, and resets once `now - window_start >= window`.
"""

from __future__ import annotations

import enum
import math
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from tracegate.ratelimit.stores import CounterStore
from tracegate.settings import Settings


class RateLimitTier(enum.StrEnum):
    general = "general"
    auth = "auth"
    api = "api"
    strict = "strict"


@dataclass(frozen=True, slots=True)
class TierPolicy:
    limit: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.limit <= 0 or self.window_seconds <= 0:
            raise ValueError("rate limit tiers need a positive limit and window")


def tier_policies_from_settings(settings: Settings) -> dict[RateLimitTier, TierPolicy]:
    return {
        RateLimitTier.general: TierPolicy(
            settings.rate_general_limit, settings.rate_general_window_seconds
        ),
        RateLimitTier.auth: TierPolicy(settings.rate_auth_limit, settings.rate_auth_window_seconds),
        RateLimitTier.api: TierPolicy(settings.rate_api_limit, settings.rate_api_window_seconds),
        RateLimitTier.strict: TierPolicy(
            settings.rate_strict_limit, settings.rate_strict_window_seconds
        ),
    }


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    tier: RateLimitTier
    limit: int
    count: int
    window_start: float
    window_seconds: float
    retry_after: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_seconds


class RateLimiter:
    def __init__(
        self,
        *,
        store: CounterStore,
        policies: Mapping[RateLimitTier, TierPolicy],
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = [t.value for t in RateLimitTier if t not in policies]
        if missing:
            raise ValueError(f"rate limit policy missing tiers: {missing}")
        self._store = store
        self._policies = dict(policies)
        self._clock = clock

    @property
    def store(self) -> CounterStore:
        return self._store

    def policy(self, tier: RateLimitTier) -> TierPolicy:
        return self._policies[tier]

    async def allow(self, identity: str, tier: RateLimitTier) -> RateLimitDecision:
        policy = self._policies[tier]
        now = self._clock()
        wc = await self._store.increment(
            f"{tier.value}:{identity}", window_seconds=policy.window_seconds, now=now
        )
        if wc.count <= policy.limit:
            return RateLimitDecision(
                True, tier, policy.limit, wc.count, wc.window_start, policy.window_seconds
            )
        # Round up so a client honoring Retry-After never lands inside the old window.
        retry_after = max(1, math.ceil(wc.window_start + policy.window_seconds - now))
        return RateLimitDecision(
            False,
            tier,
            policy.limit,
            wc.count,
            wc.window_start,
            policy.window_seconds,
            retry_after,
        )

    async def check(self, identity: str, tiers: Iterable[RateLimitTier]) -> RateLimitDecision | None:
        """
        Every tier is incremented even once one has denied, so a caller cannot dodge a
        tier by getting rejected on another. Among denials the longest retry wins;
        otherwise the tier with the least headroom is reported.
        """

        decisions = [await self.allow(identity, tier) for tier in dict.fromkeys(tiers)]
        if not decisions:
            return None
        denied = [d for d in decisions if not d.allowed]
        if denied:
            return max(denied, key=lambda d: d.retry_after)
        return min(decisions, key=lambda d: d.remaining)


# --- Module Notes -----------------------------------------------------------
# Identities are namespaced by the caller ("ip:203.0.113.7", "sub:user-42"); the limiter
# itself never inspects them.
