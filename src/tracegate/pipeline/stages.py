"""
tracegate.pipeline.stages

The fixed security stages.

Responsibilities:
- One class per stage, each an async callable `(ctx) -> Decision`.
- Each stage declares its fault policy: what the runner does when the stage raises.

Stage order (assembled in `pipeline.runner.build_stages`):
request_guard -> sanitize -> injection -> rate_limit_ip -> authenticate ->
rate_limit_subject -> authorize
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from tracegate.audit.models import SecurityEventKind as K
from tracegate.auth.authenticator import AuthFailure, Authenticator
from tracegate.auth.credentials import extract_credentials
from tracegate.authz.authorizer import Authorizer
from tracegate.inspection.injection import InjectionDetector
from tracegate.inspection.sanitizer import InputSanitizer
from tracegate.pipeline.body import BodyKind
from tracegate.pipeline.context import PipelineContext
from tracegate.pipeline.decision import (
    CONTINUE,
    INJECTION_REASONS,
    Allow,
    Decision,
    Deny,
    DenyKind,
)
from tracegate.pipeline.guard import RequestGuard
from tracegate.ratelimit.limiter import RateLimiter, RateLimitTier

# Sanitizer change reports are capped in events; the count is always exact.
_MAX_REPORTED_FIELDS = 20


@dataclass(frozen=True, slots=True)
class FaultPolicy:
    # fail-open: continue with the next stage; otherwise deny with `deny_kind`.
    fail_open: bool
    deny_kind: DenyKind | None = None


FAIL_OPEN = FaultPolicy(fail_open=True)


def fail_closed(kind: DenyKind) -> FaultPolicy:
    return FaultPolicy(fail_open=False, deny_kind=kind)


class Stage(Protocol):
    name: str
    fault_policy: FaultPolicy

    async def __call__(self, ctx: PipelineContext) -> Decision: ...


class RequestGuardStage:
    name = "request_guard"
    fault_policy = fail_closed(DenyKind.payload_too_large)

    def __init__(self, guard: RequestGuard) -> None:
        self._guard = guard

    async def __call__(self, ctx: PipelineContext) -> Decision:
        if self._guard.declared_too_large(ctx.request):
            ctx.emit(
                K.payload_too_large,
                declared=True,
                limit_bytes=self._guard.max_body_bytes,
            )
            return Deny(DenyKind.payload_too_large)

        body = await self._guard.read_body(ctx.request)
        if body is None:
            ctx.emit(K.payload_too_large, declared=False, limit_bytes=self._guard.max_body_bytes)
            return Deny(DenyKind.payload_too_large)

        ctx.body = body
        ctx.raw_inputs = {
            "query": dict(ctx.request.query),
            "path": dict(ctx.route.path_params),
        }
        if body.kind not in (BodyKind.empty, BodyKind.opaque):
            ctx.raw_inputs["body"] = body.value
        return CONTINUE


class SanitizeStage:
    name = "sanitize"
    fault_policy = fail_closed(DenyKind.injection_detected)

    def __init__(self, sanitizer: InputSanitizer) -> None:
        self._sanitizer = sanitizer

    async def __call__(self, ctx: PipelineContext) -> Decision:
        ctx.inputs, report = self._sanitizer.sanitize_surfaces(ctx.raw_inputs)
        if report.changed:
            ctx.emit(
                K.input_sanitized,
                fields=report.changed[:_MAX_REPORTED_FIELDS],
                count=len(report.changed),
            )
        return CONTINUE


class InjectionStage:
    name = "injection"
    fault_policy = fail_closed(DenyKind.injection_detected)

    def __init__(self, detector: InjectionDetector) -> None:
        self._detector = detector

    async def __call__(self, ctx: PipelineContext) -> Decision:
        # Raw values are scanned too: sanitizing strips tags, which must not hide a signature.
        finding = (
            self._detector.scan(ctx.raw_inputs)
            or self._detector.scan(ctx.inputs)
            or self._detector.scan_headers(ctx.request.headers)
        )
        if finding is None:
            return CONTINUE
        ctx.emit(K.injection_attempt, family=finding.family.value, field=finding.field)
        return Deny(DenyKind.injection_detected, INJECTION_REASONS[finding.family.value])


class RateLimitStage:
    """
    `by_subject=False`: every route tier keyed by source IP (runs before authentication).
    `by_subject=True`: the route's non-auth tiers keyed by the authenticated subject.
    """

    def __init__(
        self, limiter: RateLimiter, *, by_subject: bool = False, fail_open: bool = True
    ) -> None:
        self._limiter = limiter
        self._by_subject = by_subject
        self.fault_policy = FAIL_OPEN if fail_open else fail_closed(DenyKind.rate_limited)
        self.name = "rate_limit_subject" if by_subject else "rate_limit_ip"

    async def __call__(self, ctx: PipelineContext) -> Decision:
        tiers = ctx.route.tiers
        if self._by_subject:
            if ctx.principal is None:
                return CONTINUE
            tiers = tuple(t for t in tiers if t is not RateLimitTier.auth)
            identity = f"sub:{ctx.principal.subject_id}"
        else:
            identity = f"ip:{ctx.request.source_ip}"

        decision = await self._limiter.check(identity, tiers)
        ctx.note_rate_limit(decision)
        if decision is None or decision.allowed:
            return CONTINUE
        ctx.emit(
            K.rate_limit_exceeded,
            tier=decision.tier.value,
            keyed_by="subject" if self._by_subject else "ip",
            retry_after=decision.retry_after,
        )
        return Deny(DenyKind.rate_limited, retry_after=decision.retry_after)


class AuthenticateStage:
    name = "authenticate"
    fault_policy = fail_closed(DenyKind.unauthenticated)

    def __init__(self, authenticator: Authenticator, *, session_cookie: str) -> None:
        self._authenticator = authenticator
        self._session_cookie = session_cookie

    async def __call__(self, ctx: PipelineContext) -> Decision:
        if ctx.route.public:
            return CONTINUE

        creds = extract_credentials(
            ctx.request.headers, ctx.request.cookies, session_cookie=self._session_cookie
        )
        result = await self._authenticator.authenticate(
            creds, mfa_required=ctx.route.mfa_required
        )
        if result.principal is not None:
            ctx.principal = result.principal

        if result.failure is AuthFailure.mfa_required:
            ctx.emit(K.mfa_required, credential=result.principal.credential.value)
            return Deny(DenyKind.mfa_required)
        if result.failure is not None:
            ctx.emit(K.auth_failure, credentials_presented=creds.present)
            return Deny(DenyKind.unauthenticated)
        return CONTINUE


class AuthorizeStage:
    name = "authorize"
    fault_policy = fail_closed(DenyKind.forbidden)

    def __init__(self, authorizer: Authorizer) -> None:
        self._authorizer = authorizer

    async def __call__(self, ctx: PipelineContext) -> Decision:
        route = ctx.route
        if route.public:
            return Allow("public")
        if ctx.principal is None or route.resource is None or route.permission is None:
            # Unmatched API paths resolve to a protected declaration without a resource.
            return Deny(DenyKind.forbidden)

        decision = self._authorizer.authorize(
            ctx.principal, route.resource, route.permission, route.owner_id
        )
        ctx.authz = decision
        if decision.allowed:
            return Allow(decision.basis.value)
        ctx.emit(
            K.access_denied,
            resource=route.resource.value,
            permission=route.permission.value,
        )
        return Deny(DenyKind.forbidden)


# --- Module Notes -----------------------------------------------------------
# Stages never raise for expected denials. Anything they do raise is handled once, in
# `SecurityPipeline.evaluate`, according to `fault_policy`.
