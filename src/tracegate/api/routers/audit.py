"""
tracegate.api.routers.audit

Audit trail review endpoints (AUDIT/READ).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from tracegate.api.deps import audit_logger_dep
from tracegate.audit.logger import AuditLogger
from tracegate.audit.models import utcnow
from tracegate.auth.deps import get_principal
from tracegate.auth.models import Principal

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("")
async def list_audit_entries(
    limit: int = Query(default=100, ge=1, le=1000),
    subject_id: str | None = Query(default=None, max_length=256),
    _: Principal = Depends(get_principal),
    audit: AuditLogger = Depends(audit_logger_dep),
) -> dict[str, Any]:
    entries = await audit.sink.recent_audit(limit=limit, subject_id=subject_id)
    return {"data": {"entries": entries, "count": len(entries)}, "timestamp": utcnow().isoformat()}


@router.get("/events")
async def list_security_events(
    limit: int = Query(default=100, ge=1, le=1000),
    _: Principal = Depends(get_principal),
    audit: AuditLogger = Depends(audit_logger_dep),
) -> dict[str, Any]:
    events = await audit.sink.recent_events(limit=limit)
    return {"data": {"events": events, "count": len(events)}, "timestamp": utcnow().isoformat()}
