"""
tracegate.pipeline.context

Per-request state threaded through the pipeline stages.

Responsibilities:
- `RequestDescriptor`: the HTTP-shaped input (method, path, headers, query, body, source IP).
- `PipelineContext`: what stages learn as they run (raw and sanitized inputs, principal,
  rate-limit headroom, security events, and the names of the stages that ran).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tracegate.audit.models import SecurityEvent, SecurityEventKind
from tracegate.auth.models import Principal
from tracegate.authz.authorizer import AuthzDecision
from tracegate.pipeline.body import ParsedBody
from tracegate.pipeline.routes import RouteDeclaration
from tracegate.ratelimit.limiter import RateLimitDecision

# Reads the request body, returning None as soon as more than `limit` bytes arrive.
BodyReader = Callable[[int], Awaitable[bytes | None]]


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    method: str
    path: str
    # Header names lower-cased; repeated headers joined with ", ".
    headers: Mapping[str, str]
    query: Mapping[str, Any]
    source_ip: str
    request_id: str
    cookies: Mapping[str, str] = field(default_factory=dict)
    content_length: int | None = None
    content_type: str | None = None
    body: bytes | None = None
    read_body: BodyReader | None = None


@dataclass(slots=True)
class PipelineContext:
    request: RequestDescriptor
    route: RouteDeclaration
    body: ParsedBody | None = None
    raw_inputs: dict[str, Any] = field(default_factory=dict)
    inputs: dict[str, Any] = field(default_factory=dict)
    principal: Principal | None = None
    rate_limit: RateLimitDecision | None = None
    authz: AuthzDecision | None = None
    events: list[SecurityEvent] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)

    @property
    def subject_or_ip(self) -> str:
        if self.principal is not None:
            return self.principal.subject_id
        return self.request.source_ip

    def emit(self, kind: SecurityEventKind, **detail: Any) -> SecurityEvent:
        # detail holds field names, counts and classifications only, never raw values.
        event = SecurityEvent(
            kind=kind,
            subject_or_ip=self.subject_or_ip,
            detail=detail,
            request_id=self.request.request_id,
        )
        self.events.append(event)
        return event

    def note_rate_limit(self, decision: RateLimitDecision | None) -> None:
        # Response headers report the tier with the least headroom seen so far.
        if decision is None:
            return
        if self.rate_limit is None or decision.remaining < self.rate_limit.remaining:
            self.rate_limit = decision


# --- Module Notes -----------------------------------------------------------
# `inputs` is what the application receives after an Allow; `raw_inputs` is kept only for
# detection and is never forwarded.
