from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tracegate.audit.models import (
    AuditDecision,
    AuditEntry,
    SecurityEvent,
    SecurityEventKind,
    Severity,
)
from tracegate.monitoring.monitor import SecurityMonitor, health_status

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
K = SecurityEventKind


def _event(kind: SecurityEventKind, key: str = "ip:203.0.113.9", *, at: datetime = NOW, **detail):
    return SecurityEvent(kind, key, detail, timestamp=at)


def _entry(decision: AuditDecision, subject: str = "u-1", source_ip: str | None = None):
    return AuditEntry(
        timestamp=NOW,
        sequence=1,
        request_id="req-1",
        subject_id=subject,
        action="GET /api/users",
        resource="user",
        decision=decision,
        reason="forbidden" if decision is AuditDecision.deny else "role_grant",
        source_ip=source_ip,
    )


def _monitor(clock, **kwargs) -> SecurityMonitor:
    return SecurityMonitor(clock=clock, wall_clock=lambda: NOW, **kwargs)


def test_score_halves_every_half_life(clock) -> None:
    monitor = _monitor(clock, half_life_seconds=900)
    monitor.consume(_event(K.injection_attempt))
    assert monitor.score("ip:203.0.113.9") == pytest.approx(10.0)

    clock.advance(900)
    assert monitor.score("ip:203.0.113.9") == pytest.approx(5.0)
    assert monitor.score("never-seen") == 0.0


def test_alert_fires_once_per_crossing(clock) -> None:
    monitor = _monitor(clock, half_life_seconds=900, alert_threshold=20)

    monitor.consume(_event(K.injection_attempt))
    monitor.consume(_event(K.injection_attempt))
    assert monitor.metrics()["alerts"] == 1

    # Still above the threshold: no second alert.
    monitor.consume(_event(K.injection_attempt))
    assert monitor.metrics()["alerts"] == 1
    assert monitor.suspicious_keys() == [{"key": "ip:203.0.113.9", "score": 30.0}]

    clock.advance(1800)  # 30 -> 7.5
    assert monitor.suspicious_keys() == []
    monitor.consume(_event(K.injection_attempt))
    monitor.consume(_event(K.injection_attempt))
    assert monitor.metrics()["alerts"] == 2


def test_deny_audit_entries_raise_subject_scores(clock) -> None:
    monitor = _monitor(clock)
    monitor.consume(_entry(AuditDecision.allow))
    monitor.consume(_entry(AuditDecision.deny))
    monitor.consume(_entry(AuditDecision.deny, subject="anonymous", source_ip="198.51.100.4"))

    assert monitor.score("u-1") == pytest.approx(1.0)
    assert monitor.score("198.51.100.4") == pytest.approx(1.0)
    metrics = monitor.metrics()
    assert metrics["total_decisions"] == 3
    assert metrics["denied_decisions"] == 2


def test_sanitized_input_weighs_less_than_attacks(clock) -> None:
    monitor = _monitor(clock)
    monitor.consume(_event(K.input_sanitized, "sub:u-2"))
    monitor.consume(_event(K.stage_fault, "sub:u-3"))
    assert monitor.score("sub:u-2") == pytest.approx(0.5)
    assert monitor.score("sub:u-3") == 0.0


def test_full_queue_drops_and_counts(clock) -> None:
    monitor = _monitor(clock, queue_size=1)
    assert monitor.publish(_event(K.timeout))
    assert not monitor.publish(_event(K.timeout))
    metrics = monitor.metrics()
    assert metrics["dropped"] == 1
    assert metrics["queued"] == 1


@pytest.mark.asyncio
async def test_worker_consumes_published_items(clock) -> None:
    monitor = _monitor(clock)
    await monitor.start()
    try:
        monitor.publish(_event(K.auth_failure))
        monitor.publish(_entry(AuditDecision.deny))
        await monitor.drain()
    finally:
        await monitor.stop()

    metrics = monitor.metrics()
    assert metrics["processed"] == 2
    assert metrics["failed_auth_attempts"] == 1
    assert metrics["queued"] == 0


def test_health_score_counts_only_the_last_day(clock) -> None:
    monitor = _monitor(clock)
    monitor.consume(_event(K.injection_attempt, family="sql", field="query.q"))
    monitor.consume(_event(K.auth_failure))
    monitor.consume(_event(K.injection_attempt, at=NOW - timedelta(days=2)))

    assert monitor.health_score() == 80
    dashboard = monitor.dashboard()
    assert dashboard["status"] == "degraded"
    assert dashboard["events_by_severity"] == {"high": 2, "medium": 1}


def test_recent_events_filters(clock) -> None:
    monitor = _monitor(clock)
    monitor.consume(_event(K.auth_failure))
    monitor.consume(_event(K.injection_attempt, family="script"))
    monitor.consume(_event(K.rate_limit_exceeded))

    newest = monitor.recent_events(limit=2)
    assert [e["kind"] for e in newest] == ["rate_limit_exceeded", "injection_attempt"]
    high = monitor.recent_events(severity=Severity.high)
    assert [e["kind"] for e in high] == ["injection_attempt"]
    assert monitor.recent_events(kind=K.timeout) == []


def test_recommendations_flag_injection_families(clock) -> None:
    monitor = _monitor(clock)
    monitor.consume(_event(K.injection_attempt, family="sql"))
    ids = {r["id"] for r in monitor.recommendations()}
    assert "sql_injection_attempts" in ids
    assert "xss_attempts" not in ids
    assert monitor.metrics()["sql_injection_attempts"] == 1


def test_cleanup_drops_old_events(clock) -> None:
    monitor = _monitor(clock)
    monitor.consume(_event(K.timeout, at=NOW - timedelta(days=31)))
    monitor.consume(_event(K.timeout))

    assert monitor.cleanup() == 1
    assert len(monitor.recent_events()) == 1
    assert monitor.cleanup(older_than=timedelta(0)) == 0


@pytest.mark.parametrize(
    ("score", "status"),
    [(100, "healthy"), (85, "healthy"), (84, "degraded"), (69, "warning"), (49, "critical")],
)
def test_health_status_bands(score: int, status: str) -> None:
    assert health_status(score) == status
