"""
tracegate.audit.sinks

Durable destinations for audit entries and security events.

Responsibilities:
- Define the `RecordSink` interface used by the audit logger and the review endpoints.
- `LogRecordSink`: structured log lines only (plus a small in-process buffer for review).
- `StoreRecordSink`: append to the shared counter store's record streams.
- `DatabaseRecordSink`: one row per record via the async SQLAlchemy repositories.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracegate.audit.models import AuditEntry, SecurityEvent
from tracegate.db.repositories.audit import AuditRepo
from tracegate.db.repositories.security_events import SecurityEventRepo
from tracegate.db.session import session_scope
from tracegate.ratelimit.stores import CounterStore

AUDIT_STREAM = "audit"
EVENT_STREAM = "security_events"


class RecordSink(Protocol):
    async def write_audit(self, entry: AuditEntry) -> None: ...

    async def write_event(self, event: SecurityEvent) -> None: ...

    async def recent_audit(
        self, *, limit: int, subject_id: str | None = None
    ) -> list[dict[str, Any]]: ...

    async def recent_events(self, *, limit: int) -> list[dict[str, Any]]: ...


class LogRecordSink:
    """
    Records already go to the structured log via the audit logger; this sink only keeps
    the last few for the review endpoints of a single-process deployment.
    """

    def __init__(self, *, buffer_size: int = 1_000) -> None:
        self._audit: deque[dict[str, Any]] = deque(maxlen=buffer_size)
        self._events: deque[dict[str, Any]] = deque(maxlen=buffer_size)

    async def write_audit(self, entry: AuditEntry) -> None:
        self._audit.append(entry.to_record())

    async def write_event(self, event: SecurityEvent) -> None:
        self._events.append(event.to_record())

    async def recent_audit(
        self, *, limit: int, subject_id: str | None = None
    ) -> list[dict[str, Any]]:
        rows = [
            r for r in reversed(self._audit) if subject_id is None or r["subject_id"] == subject_id
        ]
        return rows[:limit]

    async def recent_events(self, *, limit: int) -> list[dict[str, Any]]:
        return list(reversed(self._events))[:limit]


class StoreRecordSink:
    def __init__(self, store: CounterStore) -> None:
        self._store = store

    async def write_audit(self, entry: AuditEntry) -> None:
        await self._store.append(AUDIT_STREAM, entry.to_record())

    async def write_event(self, event: SecurityEvent) -> None:
        await self._store.append(EVENT_STREAM, event.to_record())

    async def recent_audit(
        self, *, limit: int, subject_id: str | None = None
    ) -> list[dict[str, Any]]:
        if subject_id is None:
            return await self._store.read(AUDIT_STREAM, limit=limit)
        # Streams are not indexed by subject; over-read and filter.
        rows = await self._store.read(AUDIT_STREAM, limit=limit * 10)
        return [r for r in rows if r.get("subject_id") == subject_id][:limit]

    async def recent_events(self, *, limit: int) -> list[dict[str, Any]]:
        return await self._store.read(EVENT_STREAM, limit=limit)


class DatabaseRecordSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write_audit(self, entry: AuditEntry) -> None:
        async with session_scope(self._session_factory) as session:
            await AuditRepo(session).add(entry)

    async def write_event(self, event: SecurityEvent) -> None:
        async with session_scope(self._session_factory) as session:
            await SecurityEventRepo(session).add(event)

    async def recent_audit(
        self, *, limit: int, subject_id: str | None = None
    ) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            rows = await AuditRepo(session).list_recent(limit=limit, subject_id=subject_id)
        return [
            {
                "timestamp": r.created_at.isoformat(),
                "sequence": r.sequence,
                "request_id": r.request_id,
                "subject_id": r.subject_id,
                "action": r.action,
                "resource": r.resource,
                "permission": r.permission,
                "decision": r.decision,
                "reason": r.reason,
                "source_ip": r.source_ip,
            }
            for r in rows
        ]

    async def recent_events(self, *, limit: int) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            rows = await SecurityEventRepo(session).list_recent(limit=limit)
        return [
            {
                "event_id": r.event_id,
                "timestamp": r.created_at.isoformat(),
                "kind": r.kind,
                "severity": r.severity,
                "subject_or_ip": r.subject_or_ip,
                "request_id": r.request_id,
                "detail": r.detail,
            }
            for r in rows
        ]


# --- Module Notes -----------------------------------------------------------
# Sinks may raise anything (driver errors, store outages); `AuditLogger` is the only caller
# on the request path and turns those into InternalAuditFault reports.
