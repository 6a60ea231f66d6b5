"""
tracegate.db.repositories.security_events

Repository for `SecurityEventRecord` rows.
"""

from __future__ import annotations

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracegate.audit.models import SecurityEvent
from tracegate.db.models import SecurityEventRecord


class SecurityEventRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, event: SecurityEvent) -> SecurityEventRecord:
        row = SecurityEventRecord(
            event_id=event.event_id,
            kind=event.kind.value,
            severity=event.severity.value,
            subject_or_ip=event.subject_or_ip,
            request_id=event.request_id,
            detail=dict(event.detail),
            created_at=event.timestamp.replace(tzinfo=None),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_recent(
        self, *, limit: int = 100, kind: str | None = None
    ) -> list[SecurityEventRecord]:
        stmt = select(SecurityEventRecord)
        if kind is not None:
            stmt = stmt.where(SecurityEventRecord.kind == kind)
        stmt = stmt.order_by(desc(SecurityEventRecord.created_at)).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())
