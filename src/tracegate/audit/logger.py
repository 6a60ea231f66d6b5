"""
tracegate.audit.logger

Audit trail writer.

Responsibilities:
- Build one immutable `AuditEntry` per terminal pipeline decision, in arrival order.
- Emit audit entries and security events as structured log lines and to the configured sink.
- Recover locally from sink failures (`InternalAuditFault` on the fallback channel); audit
  problems never fail a request, and a stalled sink is abandoned after `write_timeout`.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from datetime import datetime

from tracegate.audit.models import AuditDecision, AuditEntry, SecurityEvent, utcnow
from tracegate.audit.sinks import RecordSink
from tracegate.errors import InternalAuditFault
from tracegate.observability.logging import get_audit_fallback_logger, get_logger

log = get_logger(__name__)
fallback = get_audit_fallback_logger()

ANONYMOUS = "anonymous"


class AuditLogger:
    def __init__(
        self,
        sink: RecordSink,
        *,
        clock: Callable[[], datetime] = utcnow,
        write_timeout: float = 2.0,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._write_timeout = write_timeout
        # itertools.count is advanced atomically under the GIL; no await between draw and use.
        self._sequence = itertools.count(1)
        self._faults = 0

    @property
    def sink(self) -> RecordSink:
        return self._sink

    @property
    def faults(self) -> int:
        return self._faults

    async def record(
        self,
        *,
        subject_id: str | None,
        action: str,
        resource: str,
        decision: AuditDecision,
        reason: str,
        request_id: str,
        permission: str | None = None,
        source_ip: str | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            timestamp=self._clock(),
            sequence=next(self._sequence),
            request_id=request_id,
            subject_id=subject_id or ANONYMOUS,
            action=action,
            resource=resource,
            decision=decision,
            reason=reason,
            permission=permission,
            source_ip=source_ip,
        )
        record = entry.to_record()
        # structlog owns the "timestamp" key; keep ours under a distinct name.
        record["recorded_at"] = record.pop("timestamp")
        log.info("audit.entry", **record)

        try:
            async with asyncio.timeout(self._write_timeout):
                await self._sink.write_audit(entry)
        except Exception as e:
            self._report_fault("audit_entry", e, request_id=request_id)
        return entry

    async def record_event(self, event: SecurityEvent) -> None:
        record = event.to_record()
        record["recorded_at"] = record.pop("timestamp")
        log.warning("security.event", **record)

        try:
            async with asyncio.timeout(self._write_timeout):
                await self._sink.write_event(event)
        except Exception as e:
            self._report_fault("security_event", e, request_id=event.request_id)

    def _report_fault(self, record_kind: str, error: Exception, *, request_id: str | None) -> None:
        self._faults += 1
        fault = InternalAuditFault(f"failed to write {record_kind}")
        fault.__cause__ = error
        fallback.error(
            "audit.internal_fault",
            record_kind=record_kind,
            request_id=request_id,
            error_class=type(error).__name__,
            fault=str(fault),
        )


# --- Module Notes -----------------------------------------------------------
# Entries of one request are written by one task in stage order, so their sequence
# numbers (and timestamps) are monotonic per request id.
