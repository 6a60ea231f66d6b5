"""
tracegate.pipeline.guard

Request size and deadline limits.

Responsibilities:
- Reject a declared `Content-Length` above the ceiling before reading any body bytes.
- Read undeclared (chunked) bodies with a hard cap, stopping at the first byte over it.
- Own the per-request deadline used by the pipeline runner.
"""

from __future__ import annotations

from dataclasses import dataclass

from tracegate.pipeline.body import ParsedBody, parse_body
from tracegate.pipeline.context import RequestDescriptor


@dataclass(frozen=True, slots=True)
class RequestGuard:
    max_body_bytes: int
    timeout_seconds: float

    def __post_init__(self) -> None:
        if self.max_body_bytes <= 0 or self.timeout_seconds <= 0:
            raise ValueError("request guard limits must be positive")

    def declared_too_large(self, request: RequestDescriptor) -> bool:
        return request.content_length is not None and request.content_length > self.max_body_bytes

    async def read_body(self, request: RequestDescriptor) -> ParsedBody | None:
        """
        Returns None when the body exceeds the ceiling; the caller denies the request.
        """

        if request.body is not None:
            data = request.body
            if len(data) > self.max_body_bytes:
                return None
        elif request.read_body is not None:
            data = await request.read_body(self.max_body_bytes)
            if data is None:
                return None
        else:
            data = b""
        return parse_body(request.content_type, data)


# --- Module Notes -----------------------------------------------------------
# The deadline itself is applied by `pipeline.runner` with asyncio.timeout_at so it covers
# the stages and the downstream handler with a single time limit.
