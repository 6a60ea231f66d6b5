"""
tracegate.api.middleware

ASGI integration of the security pipeline.

Responsibilities:
- Build a `RequestDescriptor` from the ASGI scope without reading the body up front.
- Run the pipeline; on Allow, replay the sanitized body and query string to the app and
  attach the principal to `request.state`.
- Turn denials into `{"error", "reason"}` JSON responses with the right status and
  `Retry-After`.
- Add rate-limit and security response headers to every response.

This is a pure ASGI middleware (not `BaseHTTPMiddleware`): it needs to control how the
body is read (capped, after the declared-length check) and what the app receives.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import parse_qs

from starlette.datastructures import MutableHeaders
from starlette.requests import cookie_parser
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from tracegate.errors import ClientDisconnected
from tracegate.observability.logging import get_logger
from tracegate.observability.middleware import REQUEST_ID_HEADER, resolve_request_id
from tracegate.pipeline.body import BodyKind, encode_body, encode_query, flatten_query
from tracegate.pipeline.context import PipelineContext, RequestDescriptor
from tracegate.pipeline.decision import Deny, DenyKind
from tracegate.pipeline.routes import RoutePolicy
from tracegate.pipeline.runner import SecurityPipeline

log = get_logger(__name__)

SECURITY_HEADERS: tuple[tuple[str, str], ...] = (
    ("x-content-type-options", "nosniff"),
    ("x-frame-options", "DENY"),
    ("x-xss-protection", "1; mode=block"),
    ("strict-transport-security", "max-age=31536000; includeSubDomains; preload"),
    ("referrer-policy", "strict-origin-when-cross-origin"),
    ("permissions-policy", "geolocation=(), microphone=(), camera=()"),
    ("cache-control", "no-store, no-cache, must-revalidate, proxy-revalidate"),
    ("pragma", "no-cache"),
    ("expires", "0"),
)


def _decode_headers(scope: Scope) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw_name, raw_value in scope.get("headers", []):
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        out[name] = f"{out[name]}, {value}" if name in out else value
    return out


def _content_length(headers: Mapping[str, str]) -> int | None:
    raw = headers.get("content-length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


def _body_reader(receive: Receive):
    async def read(limit: int) -> bytes | None:
        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                raise ClientDisconnected("client disconnected while sending the body")
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > limit:
                # Stop at the first chunk over the cap; the rest is never read.
                return None
            chunks.append(chunk)
            if not message.get("more_body", False):
                return b"".join(chunks)

    return read


def _replay(body: bytes, receive: Receive) -> Receive:
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        # After the body, the app only ever waits for the disconnect.
        return await receive()

    return replay


class SecurityPipelineMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        *,
        security_headers: bool = True,
        content_security_policy: str | None = None,
    ) -> None:
        self.app = app
        self._headers = SECURITY_HEADERS if security_headers else ()
        if security_headers and content_security_policy:
            self._headers += (("content-security-policy", content_security_policy),)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope["app"].state
        pipeline: SecurityPipeline | None = getattr(state, "pipeline", None)
        policy: RoutePolicy | None = getattr(state, "route_policy", None)
        if pipeline is None or policy is None:
            raise RuntimeError("security pipeline is not initialized (app startup has not run)")

        headers = _decode_headers(scope)
        request_state = scope.setdefault("state", {})
        request_id = request_state.get("request_id") or resolve_request_id(
            headers.get(REQUEST_ID_HEADER)
        )
        request_state["request_id"] = request_id

        query = flatten_query(
            parse_qs(scope.get("query_string", b"").decode("latin-1"), keep_blank_values=True)
        )
        client = scope.get("client")
        descriptor = RequestDescriptor(
            method=scope["method"],
            path=scope["path"],
            headers=headers,
            query=query,
            source_ip=client[0] if client else "unknown",
            request_id=request_id,
            cookies=cookie_parser(headers.get("cookie", "")),
            content_length=_content_length(headers),
            content_type=headers.get("content-type"),
            read_body=_body_reader(receive),
        )
        ctx = PipelineContext(request=descriptor, route=policy.resolve(scope["method"], scope["path"]))

        response_started = False

        async def send_with_headers(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                message.setdefault("headers", [])
                out = MutableHeaders(scope=message)
                for name, value in self._headers:
                    if name not in out:
                        out[name] = value
                rl = ctx.rate_limit
                if rl is not None:
                    out["x-ratelimit-limit"] = str(rl.limit)
                    out["x-ratelimit-remaining"] = str(rl.remaining)
                    out["x-ratelimit-reset"] = str(int(rl.reset_at))
            await send(message)

        async def call_app(ctx: PipelineContext) -> None:
            request_state["principal"] = ctx.principal
            body = self._forward_body(ctx)
            await self.app(self._rewrite_scope(scope, ctx, body), _replay(body, receive), send_with_headers)

        try:
            outcome = await pipeline.run(ctx, call_app)
        except ClientDisconnected:
            log.info("pipeline.client_disconnected", stages=ctx.trace)
            return

        decision = outcome.decision
        if not isinstance(decision, Deny):
            return
        if response_started:
            # Deadline hit mid-response: the stream is cut, nothing more can be sent.
            log.warning("pipeline.timeout_after_response_start")
            return

        extra = {}
        if decision.kind is DenyKind.rate_limited and decision.retry_after is not None:
            extra["retry-after"] = str(decision.retry_after)
        response = JSONResponse(decision.body(), status_code=decision.status_code, headers=extra)
        await response(scope, receive, send_with_headers)

    @staticmethod
    def _forward_body(ctx: PipelineContext) -> bytes:
        body = ctx.body
        if body is None:
            return b""
        if body.kind in (BodyKind.empty, BodyKind.opaque):
            return body.raw
        cleaned = ctx.inputs.get("body")
        if cleaned == ctx.raw_inputs.get("body"):
            return body.raw
        return encode_body(body, cleaned)

    @staticmethod
    def _rewrite_scope(scope: Scope, ctx: PipelineContext, body: bytes) -> Scope:
        inner = dict(scope)
        cleaned_query = ctx.inputs.get("query", {})
        if cleaned_query != ctx.raw_inputs.get("query", {}):
            inner["query_string"] = encode_query(cleaned_query)

        if ctx.body is not None and body is not ctx.body.raw:
            raw_headers = [
                (k, v) for k, v in scope.get("headers", []) if k.lower() != b"content-length"
            ]
            raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))
            inner["headers"] = raw_headers
        return inner


# --- Module Notes -----------------------------------------------------------
# Install inside `RequestContextMiddleware` so log lines and audit rows share its request id.
