"""
tracegate.audit.models

Immutable audit and security-event records.

Responsibilities:
- `AuditEntry`: one per terminal authorization decision.
- `SecurityEvent`: anomalous input or denied decision, emitted by any stage.
- Stable JSON-friendly serialization for sinks and logs.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class AuditDecision(enum.StrEnum):
    allow = "allow"
    deny = "deny"


class Severity(enum.StrEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class SecurityEventKind(enum.StrEnum):
    injection_attempt = "injection_attempt"
    input_sanitized = "input_sanitized"
    auth_failure = "auth_failure"
    mfa_required = "mfa_required"
    rate_limit_exceeded = "rate_limit_exceeded"
    access_denied = "access_denied"
    payload_too_large = "payload_too_large"
    timeout = "timeout"
    stage_fault = "stage_fault"


SEVERITY: Mapping[SecurityEventKind, Severity] = MappingProxyType(
    {
        SecurityEventKind.injection_attempt: Severity.high,
        SecurityEventKind.input_sanitized: Severity.low,
        SecurityEventKind.auth_failure: Severity.medium,
        SecurityEventKind.mfa_required: Severity.low,
        SecurityEventKind.rate_limit_exceeded: Severity.medium,
        SecurityEventKind.access_denied: Severity.medium,
        SecurityEventKind.payload_too_large: Severity.medium,
        SecurityEventKind.timeout: Severity.medium,
        SecurityEventKind.stage_fault: Severity.high,
    }
)


@dataclass(frozen=True, slots=True)
class AuditEntry:
    timestamp: datetime
    sequence: int
    request_id: str
    subject_id: str
    action: str
    resource: str
    decision: AuditDecision
    reason: str
    permission: str | None = None
    source_ip: str | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
            "request_id": self.request_id,
            "subject_id": self.subject_id,
            "action": self.action,
            "resource": self.resource,
            "permission": self.permission,
            "decision": self.decision.value,
            "reason": self.reason,
            "source_ip": self.source_ip,
        }


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    kind: SecurityEventKind
    subject_or_ip: str
    detail: Mapping[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        # Freeze the detail mapping too; events are append-only facts.
        object.__setattr__(self, "detail", MappingProxyType(dict(self.detail)))

    @property
    def severity(self) -> Severity:
        return SEVERITY[self.kind]

    def to_record(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "severity": self.severity.value,
            "subject_or_ip": self.subject_or_ip,
            "request_id": self.request_id,
            "detail": dict(self.detail),
        }


# --- Module Notes -----------------------------------------------------------
# `detail` must only hold field names, counts and classifications: never raw input values,
# tokens or key material.
