"""
tracegate.db.repositories.audit

Repository for `AuditEntryRecord` rows.

Responsibilities:
- Append audit entries (one per terminal pipeline decision).
- Query the audit trail by subject or request for review endpoints.
"""

from __future__ import annotations

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from tracegate.audit.models import AuditEntry
from tracegate.db.models import AuditEntryRecord


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, entry: AuditEntry) -> AuditEntryRecord:
        # Audit rows are append-only (no update/delete) in normal operation.
        row = AuditEntryRecord(
            sequence=entry.sequence,
            request_id=entry.request_id,
            subject_id=entry.subject_id,
            action=entry.action,
            resource=entry.resource,
            permission=entry.permission,
            decision=entry.decision.value,
            reason=entry.reason,
            source_ip=entry.source_ip,
            created_at=entry.timestamp.replace(tzinfo=None),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_recent(
        self, *, limit: int = 200, subject_id: str | None = None
    ) -> list[AuditEntryRecord]:
        # Newest first for review UIs.
        stmt = select(AuditEntryRecord)
        if subject_id is not None:
            stmt = stmt.where(AuditEntryRecord.subject_id == subject_id)
        stmt = stmt.order_by(
            desc(AuditEntryRecord.created_at), desc(AuditEntryRecord.sequence)
        ).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# (subject_id, created_at) is indexed; keep new queries on that path.
