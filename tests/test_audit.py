from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from tracegate.audit.logger import AuditLogger
from tracegate.audit.models import AuditDecision, SecurityEvent, SecurityEventKind, Severity
from tracegate.audit.sinks import DatabaseRecordSink, LogRecordSink, StoreRecordSink
from tracegate.db.init_db import init_db
from tracegate.db.session import create_engine, create_sessionmaker
from tracegate.ratelimit.stores import InMemoryCounterStore


class FailingSink(LogRecordSink):
    async def write_audit(self, entry) -> None:
        raise RuntimeError("disk full")

    async def write_event(self, event) -> None:
        raise RuntimeError("disk full")


class StalledSink(LogRecordSink):
    async def write_audit(self, entry) -> None:
        await asyncio.sleep(3600)


def _fixed_clock() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


async def _record(audit: AuditLogger, **overrides):
    values = {
        "subject_id": "u-1",
        "action": "POST /api/products",
        "resource": "product",
        "permission": "write",
        "decision": AuditDecision.allow,
        "reason": "role_grant",
        "request_id": "req-1",
        "source_ip": "198.51.100.7",
    }
    values.update(overrides)
    return await audit.record(**values)


@pytest.mark.asyncio
async def test_entries_are_sequenced_in_arrival_order() -> None:
    sink = LogRecordSink()
    audit = AuditLogger(sink, clock=_fixed_clock)

    first = await _record(audit)
    second = await _record(audit, subject_id=None, decision=AuditDecision.deny, reason="forbidden")

    assert (first.sequence, second.sequence) == (1, 2)
    assert second.subject_id == "anonymous"
    assert first.timestamp == _fixed_clock()

    recent = await sink.recent_audit(limit=10)
    assert [r["sequence"] for r in recent] == [2, 1]
    assert await sink.recent_audit(limit=10, subject_id="u-1") == [recent[1]]


@pytest.mark.asyncio
async def test_sink_failures_are_contained() -> None:
    audit = AuditLogger(FailingSink())

    entry = await _record(audit)
    await audit.record_event(SecurityEvent(SecurityEventKind.timeout, "ip:198.51.100.7"))

    assert entry.sequence == 1
    assert audit.faults == 2


@pytest.mark.asyncio
async def test_stalled_sink_write_is_abandoned() -> None:
    audit = AuditLogger(StalledSink(), write_timeout=0.01)

    entry = await asyncio.wait_for(_record(audit), 1.0)

    assert entry.sequence == 1
    assert audit.faults == 1


def test_event_detail_is_frozen_and_severity_is_derived() -> None:
    detail = {"field": "query.q"}
    event = SecurityEvent(SecurityEventKind.injection_attempt, "sub:u-1", detail)
    detail["field"] = "mutated"

    assert event.detail["field"] == "query.q"
    assert event.severity is Severity.high
    with pytest.raises(TypeError):
        event.detail["x"] = 1  # type: ignore[index]


@pytest.mark.asyncio
async def test_store_sink_round_trips_records() -> None:
    sink = StoreRecordSink(InMemoryCounterStore())
    audit = AuditLogger(sink)

    await _record(audit, subject_id="u-1")
    await _record(audit, subject_id="u-2")
    await _record(audit, subject_id="u-1", decision=AuditDecision.deny, reason="forbidden")
    await audit.record_event(SecurityEvent(SecurityEventKind.auth_failure, "ip:198.51.100.7"))

    mine = await sink.recent_audit(limit=10, subject_id="u-1")
    assert [r["reason"] for r in mine] == ["forbidden", "role_grant"]
    assert len(await sink.recent_audit(limit=2)) == 2

    events = await sink.recent_events(limit=5)
    assert [e["kind"] for e in events] == ["auth_failure"]
    assert events[0]["severity"] == "medium"


@pytest.mark.asyncio
async def test_database_sink_persists_rows(make_settings) -> None:
    engine = create_engine(make_settings())
    try:
        await init_db(engine)
        sink = DatabaseRecordSink(create_sessionmaker(engine))
        audit = AuditLogger(sink)

        await _record(audit, request_id="req-a")
        await _record(audit, request_id="req-b", decision=AuditDecision.deny, reason="forbidden")
        await audit.record_event(
            SecurityEvent(
                SecurityEventKind.rate_limit_exceeded,
                "sub:u-1",
                {"tier": "auth", "retry_after": 300},
                request_id="req-b",
            )
        )

        rows = await sink.recent_audit(limit=10)
        assert [r["request_id"] for r in rows] == ["req-b", "req-a"]
        assert rows[0]["decision"] == "deny"

        events = await sink.recent_events(limit=10)
        assert len(events) == 1
        assert events[0]["detail"] == {"tier": "auth", "retry_after": 300}
        assert audit.faults == 0
    finally:
        await engine.dispose()
