"""
tracegate.api.routers.security

Security monitoring endpoints (admin/moderator).

Responsibilities:
- Expose the monitor's dashboard, recent events, per-key scores, health and
  recommendations.
- Run retention cleanup.

Access is decided by the pipeline from the route table (SECURITY/READ for reads,
SECURITY/ADMIN with MFA for cleanup); handlers only read the resolved principal.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query

from tracegate.api.deps import monitor_dep
from tracegate.audit.models import SecurityEventKind, Severity, utcnow
from tracegate.auth.deps import get_principal
from tracegate.auth.models import Principal
from tracegate.monitoring.monitor import SecurityMonitor, health_status
from tracegate.observability.logging import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/api/security", tags=["security"])


def _envelope(data: Any) -> dict[str, Any]:
    return {"data": data, "timestamp": utcnow().isoformat()}


@router.get("/dashboard")
async def dashboard(
    _: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    return _envelope(monitor.dashboard())


@router.get("/metrics")
async def metrics(
    _: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    return _envelope(monitor.metrics())


@router.get("/events")
async def events(
    limit: int = Query(default=100, ge=1, le=1000),
    kind: SecurityEventKind | None = None,
    severity: Severity | None = None,
    _: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    items = monitor.recent_events(limit=limit, kind=kind, severity=severity)
    return _envelope({"events": items, "count": len(items)})


@router.get("/scores/{key}")
async def score(
    key: str,
    _: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    return _envelope({"key": key, "score": round(monitor.score(key), 4)})


@router.get("/health")
async def health(
    _: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    value = monitor.health_score()
    return _envelope(
        {
            "status": health_status(value),
            "health_score": value,
            "recommendations": monitor.recommendations(),
        }
    )


@router.get("/recommendations")
async def recommendations(
    _: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    recs = monitor.recommendations()
    return _envelope(
        {
            "recommendations": recs,
            "high_priority": sum(1 for r in recs if r["priority"] in ("high", "critical")),
            "total": len(recs),
        }
    )


@router.post("/cleanup")
async def cleanup(
    older_than_days: int | None = Query(default=None, ge=1, le=3650),
    principal: Principal = Depends(get_principal),
    monitor: SecurityMonitor = Depends(monitor_dep),
) -> dict[str, Any]:
    removed = monitor.cleanup(
        older_than=timedelta(days=older_than_days) if older_than_days is not None else None
    )
    log.info("security.cleanup_requested", subject_id=principal.subject_id, removed=removed)
    return _envelope({"removed": removed})


# --- Module Notes -----------------------------------------------------------
# Monitor data is per process; durable event history is read through /api/audit/events.
