"""
tracegate.monitoring.monitor

Asynchronous security monitor.

Responsibilities:
- Accept security events and audit entries without blocking the request path
  (bounded queue, drop-and-count when full).
- Maintain an exponentially decaying anomaly score per subject/IP.
- Log a threshold alert once per crossing.
- Aggregate running metrics, a recent-event buffer, a 0-100 health score and
  recommendations for the security dashboard.

The monitor is observational: nothing in the decision path reads its scores.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import Counter, deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any

from tracegate.audit.models import (
    AuditDecision,
    AuditEntry,
    SecurityEvent,
    SecurityEventKind,
    Severity,
    utcnow,
)
from tracegate.observability.logging import get_logger

log = get_logger(__name__)

K = SecurityEventKind

KIND_WEIGHTS: Mapping[SecurityEventKind, float] = MappingProxyType(
    {
        K.injection_attempt: 10.0,
        K.auth_failure: 3.0,
        K.access_denied: 3.0,
        K.rate_limit_exceeded: 2.0,
        K.payload_too_large: 2.0,
        K.mfa_required: 1.0,
        K.timeout: 1.0,
        K.input_sanitized: 0.5,
        K.stage_fault: 0.0,
    }
)
DENY_AUDIT_WEIGHT = 1.0

# Health score deductions per event seen in the last 24 hours.
SEVERITY_DEDUCTION: Mapping[Severity, int] = MappingProxyType(
    {Severity.low: 1, Severity.medium: 5, Severity.high: 15, Severity.critical: 30}
)
HEALTH_WINDOW = timedelta(hours=24)

_PRUNE_EVERY = 1_000
_PRUNE_BELOW = 0.01


@dataclass(slots=True)
class _Score:
    value: float
    updated_at: float
    alerted: bool = False


def health_status(score: int) -> str:
    if score < 50:
        return "critical"
    if score < 70:
        return "warning"
    if score < 85:
        return "degraded"
    return "healthy"


class SecurityMonitor:
    def __init__(
        self,
        *,
        half_life_seconds: float = 900.0,
        alert_threshold: float = 20.0,
        queue_size: int = 10_000,
        recent_size: int = 10_000,
        retention: timedelta = timedelta(days=30),
        clock: Callable[[], float] = time.time,
        wall_clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._half_life = half_life_seconds
        self._threshold = alert_threshold
        self._retention = retention
        self._clock = clock
        self._wall_clock = wall_clock

        self._queue: asyncio.Queue[SecurityEvent | AuditEntry] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None

        self._scores: dict[str, _Score] = {}
        self._recent: deque[SecurityEvent] = deque(maxlen=recent_size)
        self._by_kind: Counter[str] = Counter()
        self._by_family: Counter[str] = Counter()
        self._decisions: Counter[str] = Counter()
        self._dropped = 0
        self._processed = 0
        self._alerts = 0

    # --- intake ---------------------------------------------------------------

    def publish(self, item: SecurityEvent | AuditEntry) -> bool:
        """
        Fire-and-forget hand-off from the request path. Returns False when the item was
        dropped because the queue is full.
        """

        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._dropped += 1
            return False
        return True

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="security-monitor")

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self, *, timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        try:
            async with asyncio.timeout(timeout):
                await self.drain()
        except TimeoutError:
            log.warning("monitor.stop_drain_timeout", pending=self._queue.qsize())
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                self.consume(item)
            except Exception:
                # One bad record must not stop aggregation.
                log.exception("monitor.consume_failed")
            finally:
                self._queue.task_done()

    # --- aggregation ----------------------------------------------------------

    def consume(self, item: SecurityEvent | AuditEntry) -> None:
        self._processed += 1
        if isinstance(item, AuditEntry):
            self._decisions[item.decision.value] += 1
            if item.decision is AuditDecision.deny:
                key = item.subject_id if item.subject_id != "anonymous" else item.source_ip
                if key:
                    self._bump(key, DENY_AUDIT_WEIGHT)
        else:
            self._recent.append(item)
            self._by_kind[item.kind.value] += 1
            family = item.detail.get("family")
            if item.kind is K.injection_attempt and isinstance(family, str):
                self._by_family[family] += 1
            self._bump(item.subject_or_ip, KIND_WEIGHTS.get(item.kind, 1.0))

        if self._processed % _PRUNE_EVERY == 0:
            self._prune_scores()

    def _decayed(self, score: _Score, now: float) -> float:
        elapsed = max(0.0, now - score.updated_at)
        return score.value * 0.5 ** (elapsed / self._half_life)

    def _bump(self, key: str, weight: float) -> None:
        if weight <= 0:
            return
        now = self._clock()
        score = self._scores.get(key)
        if score is None:
            score = _Score(0.0, now)
            self._scores[key] = score
        current = self._decayed(score, now)
        if current < self._threshold:
            # Decayed back below the threshold: the next crossing alerts again.
            score.alerted = False
        score.value = current + weight
        score.updated_at = now

        if score.value >= self._threshold and not score.alerted:
            score.alerted = True
            self._alerts += 1
            log.warning(
                "security.alert",
                key=key,
                score=round(score.value, 2),
                threshold=self._threshold,
            )

    def _prune_scores(self) -> None:
        now = self._clock()
        for key in [k for k, s in self._scores.items() if self._decayed(s, now) < _PRUNE_BELOW]:
            del self._scores[key]

    # --- queries --------------------------------------------------------------

    def score(self, key: str) -> float:
        score = self._scores.get(key)
        if score is None:
            return 0.0
        return self._decayed(score, self._clock())

    def suspicious_keys(self, *, limit: int = 10) -> list[dict[str, Any]]:
        now = self._clock()
        ranked = sorted(
            ((k, self._decayed(s, now)) for k, s in self._scores.items()),
            key=lambda kv: kv[1],
            reverse=True,
        )
        return [
            {"key": k, "score": round(v, 2)} for k, v in ranked if v >= self._threshold
        ][:limit]

    def recent_events(
        self,
        *,
        limit: int = 100,
        kind: SecurityEventKind | None = None,
        severity: Severity | None = None,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for event in reversed(self._recent):
            if kind is not None and event.kind is not kind:
                continue
            if severity is not None and event.severity is not severity:
                continue
            out.append(event.to_record())
            if len(out) >= limit:
                break
        return out

    def metrics(self) -> dict[str, Any]:
        allowed = self._decisions.get(AuditDecision.allow.value, 0)
        denied = self._decisions.get(AuditDecision.deny.value, 0)
        return {
            "total_decisions": allowed + denied,
            "allowed_decisions": allowed,
            "denied_decisions": denied,
            "events_by_kind": dict(self._by_kind),
            "sql_injection_attempts": self._by_family.get("sql", 0),
            "xss_attempts": self._by_family.get("script", 0),
            "failed_auth_attempts": self._by_kind.get(K.auth_failure.value, 0),
            "rate_limit_hits": self._by_kind.get(K.rate_limit_exceeded.value, 0),
            "alerts": self._alerts,
            "processed": self._processed,
            "dropped": self._dropped,
            "queued": self._queue.qsize(),
        }

    def health_score(self) -> int:
        cutoff = self._wall_clock() - HEALTH_WINDOW
        deduction = sum(
            SEVERITY_DEDUCTION[e.severity] for e in self._recent if e.timestamp >= cutoff
        )
        return max(0, 100 - deduction)

    def recommendations(self) -> list[dict[str, str]]:
        m = self.metrics()
        health = self.health_score()
        recs: list[dict[str, str]] = []

        blocked_pct = 100.0 * m["denied_decisions"] / max(m["total_decisions"], 1)
        if blocked_pct > 10:
            recs.append(
                {
                    "id": "high_block_rate",
                    "priority": "high",
                    "title": "High share of denied requests",
                    "action": "Review denied requests and adjust route policies if needed.",
                }
            )
        if len(self.suspicious_keys(limit=100)) > 5:
            recs.append(
                {
                    "id": "many_suspicious_sources",
                    "priority": "medium",
                    "title": "Multiple suspicious subjects or IPs",
                    "action": "Consider blocking or additional monitoring for the listed keys.",
                }
            )
        if m["failed_auth_attempts"] > 100:
            recs.append(
                {
                    "id": "high_auth_failures",
                    "priority": "high",
                    "title": "High number of failed authentication attempts",
                    "action": "Review authentication logs and consider account lockout.",
                }
            )
        if m["sql_injection_attempts"] > 0:
            recs.append(
                {
                    "id": "sql_injection_attempts",
                    "priority": "critical",
                    "title": "SQL injection attempts detected",
                    "action": "Confirm every downstream query is parameterized.",
                }
            )
        if m["xss_attempts"] > 0:
            recs.append(
                {
                    "id": "xss_attempts",
                    "priority": "critical",
                    "title": "Script injection attempts detected",
                    "action": "Confirm output encoding on every rendering path.",
                }
            )
        if m["rate_limit_hits"] > 50:
            recs.append(
                {
                    "id": "high_rate_limit_hits",
                    "priority": "medium",
                    "title": "High rate limiting activity",
                    "action": "Review tier limits against legitimate traffic.",
                }
            )
        if health < 70:
            recs.append(
                {
                    "id": "low_health_score",
                    "priority": "high",
                    "title": f"Low security health score ({health}/100)",
                    "action": "Address high-severity events first.",
                }
            )
        return recs

    def dashboard(self) -> dict[str, Any]:
        health = self.health_score()
        by_severity: Counter[str] = Counter(e.severity.value for e in self._recent)
        return {
            "metrics": self.metrics(),
            "events_by_severity": dict(by_severity),
            "recent_events": self.recent_events(limit=20),
            "suspicious_keys": self.suspicious_keys(),
            "health_score": health,
            "status": health_status(health),
        }

    def cleanup(self, *, older_than: timedelta | None = None) -> int:
        """
        Drop buffered events older than the retention period (30 days by default) and
        scores that have decayed to nothing. Returns the number of events removed.
        """

        cutoff = self._wall_clock() - (older_than if older_than is not None else self._retention)
        kept = [e for e in self._recent if e.timestamp >= cutoff]
        removed = len(self._recent) - len(kept)
        self._recent.clear()
        self._recent.extend(kept)
        self._prune_scores()
        log.info("monitor.cleanup", removed=removed, remaining=len(kept))
        return removed


# --- Module Notes -----------------------------------------------------------
# Scores are ephemeral and per process; they are derived from events and can be rebuilt by
# replaying the event sink.
