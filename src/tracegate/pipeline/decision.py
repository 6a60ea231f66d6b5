"""
tracegate.pipeline.decision

Stage results.

Responsibilities:
- `Continue`: the stage is satisfied; run the next one.
- `Allow`: terminal grant (the authorizer, or a public route).
- `Deny`: terminal refusal with a fixed kind, a fixed short reason and, for rate limiting,
  a retry-after in seconds.

Expected denials are values, never exceptions. Reasons are drawn from fixed text so a
response body can never echo caller input or validation internals.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from starlette import status


class DenyKind(enum.StrEnum):
    payload_too_large = "payload_too_large"
    timeout = "timeout"
    injection_detected = "injection_detected"
    rate_limited = "rate_limited"
    unauthenticated = "unauthenticated"
    mfa_required = "mfa_required"
    forbidden = "forbidden"

    @property
    def status_code(self) -> int:
        return _STATUS[self]

    @property
    def default_reason(self) -> str:
        return _REASONS[self]


_STATUS: dict[DenyKind, int] = {
    DenyKind.payload_too_large: status.HTTP_413_CONTENT_TOO_LARGE,
    DenyKind.timeout: status.HTTP_408_REQUEST_TIMEOUT,
    DenyKind.injection_detected: status.HTTP_400_BAD_REQUEST,
    DenyKind.rate_limited: status.HTTP_429_TOO_MANY_REQUESTS,
    DenyKind.unauthenticated: status.HTTP_401_UNAUTHORIZED,
    DenyKind.mfa_required: status.HTTP_401_UNAUTHORIZED,
    DenyKind.forbidden: status.HTTP_403_FORBIDDEN,
}

_REASONS: dict[DenyKind, str] = {
    DenyKind.payload_too_large: "request body exceeds the size limit",
    DenyKind.timeout: "request deadline exceeded",
    DenyKind.injection_detected: "request contains disallowed content",
    DenyKind.rate_limited: "too many requests",
    DenyKind.unauthenticated: "invalid or missing credentials",
    DenyKind.mfa_required: "multi-factor verification required",
    DenyKind.forbidden: "insufficient permissions",
}

# Injection reasons name the signature family, never the pattern.
INJECTION_REASONS: dict[str, str] = {
    "sql": "sql injection pattern detected",
    "script": "script injection pattern detected",
}


@dataclass(frozen=True, slots=True)
class Continue:
    pass


CONTINUE = Continue()


@dataclass(frozen=True, slots=True)
class Allow:
    # Audit reason: role_grant, ownership or public.
    reason: str = "role_grant"


@dataclass(frozen=True, slots=True)
class Deny:
    kind: DenyKind
    reason: str | None = None
    retry_after: int | None = None

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def public_reason(self) -> str:
        return self.reason or self.kind.default_reason

    def body(self) -> dict[str, Any]:
        return {"error": self.kind.value, "reason": self.public_reason}


Decision = Continue | Allow | Deny
Terminal = Allow | Deny


# --- Module Notes -----------------------------------------------------------
# Both 401 kinds share a status code; clients tell them apart by `error` so an MFA challenge
# can be started without re-sending the primary credential.
