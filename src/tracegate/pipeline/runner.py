"""
tracegate.pipeline.runner

Sequential composition of the security stages.

Responsibilities:
- Run the fixed stage list in order; the first terminal decision short-circuits the rest.
- Apply each stage's fault policy exactly once, here.
- Write exactly one audit entry per terminal decision, then hand the request's security
  events to the sink and the monitor.
- Enforce one deadline across the stages and the downstream handler; expiry cancels
  whatever is in flight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from tracegate.audit.logger import AuditLogger
from tracegate.audit.models import AuditDecision, AuditEntry
from tracegate.audit.models import SecurityEventKind as K
from tracegate.auth.authenticator import Authenticator
from tracegate.authz.authorizer import Authorizer
from tracegate.errors import ClientDisconnected
from tracegate.inspection.injection import InjectionDetector
from tracegate.inspection.sanitizer import InputSanitizer
from tracegate.monitoring.monitor import SecurityMonitor
from tracegate.observability.logging import get_logger
from tracegate.pipeline.context import PipelineContext
from tracegate.pipeline.decision import Allow, Continue, Deny, DenyKind, Terminal
from tracegate.pipeline.guard import RequestGuard
from tracegate.pipeline.stages import (
    AuthenticateStage,
    AuthorizeStage,
    InjectionStage,
    RateLimitStage,
    RequestGuardStage,
    SanitizeStage,
    Stage,
)
from tracegate.ratelimit.limiter import RateLimiter

log = get_logger(__name__)

R = TypeVar("R")


def build_stages(
    *,
    guard: RequestGuard,
    sanitizer: InputSanitizer,
    detector: InjectionDetector,
    limiter: RateLimiter,
    authenticator: Authenticator,
    authorizer: Authorizer,
    session_cookie: str,
    rate_limit_fail_open: bool = True,
) -> list[Stage]:
    return [
        RequestGuardStage(guard),
        SanitizeStage(sanitizer),
        InjectionStage(detector),
        RateLimitStage(limiter, fail_open=rate_limit_fail_open),
        AuthenticateStage(authenticator, session_cookie=session_cookie),
        RateLimitStage(limiter, by_subject=True, fail_open=rate_limit_fail_open),
        AuthorizeStage(authorizer),
    ]


@dataclass(frozen=True, slots=True)
class PipelineOutcome(Generic[R]):
    decision: Terminal
    result: R | None = None
    audit_entry: AuditEntry | None = None
    # True when the deadline expired inside the handler, after an Allow was recorded.
    handler_timed_out: bool = False


class SecurityPipeline:
    def __init__(
        self,
        *,
        stages: Sequence[Stage],
        audit: AuditLogger,
        monitor: SecurityMonitor | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate stage names: {names}")
        self._stages = tuple(stages)
        self._audit = audit
        self._monitor = monitor
        self._timeout = timeout_seconds

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self._stages)

    async def evaluate(self, ctx: PipelineContext) -> Terminal:
        """
        Run the stages without a deadline or audit; `run` adds both.
        """

        for stage in self._stages:
            ctx.trace.append(stage.name)
            try:
                decision = await stage(ctx)
            except ClientDisconnected:
                raise
            except Exception as e:
                decision = self._on_fault(stage, ctx, e)
            if isinstance(decision, Continue):
                continue
            return decision
        # A stage list without a terminal stage never grants access.
        return Deny(DenyKind.forbidden)

    def _on_fault(self, stage: Stage, ctx: PipelineContext, error: Exception) -> Continue | Deny:
        policy = stage.fault_policy
        log.error(
            "pipeline.stage_fault",
            stage=stage.name,
            error_class=type(error).__name__,
            fail_open=policy.fail_open,
        )
        ctx.emit(
            K.stage_fault,
            stage=stage.name,
            error_class=type(error).__name__,
            fail_open=policy.fail_open,
        )
        if policy.fail_open:
            return Continue()
        return Deny(policy.deny_kind or DenyKind.forbidden)

    async def run(
        self,
        ctx: PipelineContext,
        handler: Callable[[PipelineContext], Awaitable[R]] | None = None,
    ) -> PipelineOutcome[R]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        try:
            async with asyncio.timeout_at(deadline):
                decision = await self.evaluate(ctx)
        except TimeoutError:
            ctx.emit(K.timeout, phase="pipeline", stage=ctx.trace[-1] if ctx.trace else None)
            decision = Deny(DenyKind.timeout)

        entry = await self._finish(ctx, decision)
        if isinstance(decision, Deny) or handler is None:
            return PipelineOutcome(decision, audit_entry=entry)

        try:
            async with asyncio.timeout_at(deadline):
                result = await handler(ctx)
        except TimeoutError:
            # The Allow is already on record; the expiry is reported as an event only.
            event = ctx.emit(K.timeout, phase="handler")
            await self._audit.record_event(event)
            self._publish(event)
            return PipelineOutcome(
                Deny(DenyKind.timeout), audit_entry=entry, handler_timed_out=True
            )
        return PipelineOutcome(decision, result=result, audit_entry=entry)

    async def _finish(self, ctx: PipelineContext, decision: Terminal) -> AuditEntry:
        route = ctx.route
        if isinstance(decision, Allow):
            audit_decision, reason = AuditDecision.allow, decision.reason
        else:
            audit_decision, reason = AuditDecision.deny, decision.kind.value

        entry = await self._audit.record(
            subject_id=ctx.principal.subject_id if ctx.principal is not None else None,
            action=route.action,
            resource=route.resource.value if route.resource is not None else "none",
            permission=route.permission.value if route.permission is not None else None,
            decision=audit_decision,
            reason=reason,
            request_id=ctx.request.request_id,
            source_ip=ctx.request.source_ip,
        )
        for event in ctx.events:
            await self._audit.record_event(event)
            self._publish(event)
        self._publish(entry)
        return entry

    def _publish(self, item) -> None:
        if self._monitor is not None:
            self._monitor.publish(item)


# --- Module Notes -----------------------------------------------------------
# Stage faults are not audit faults: a failing stage is converted to Continue or Deny per
# its policy and still produces exactly one audit entry.
