"""
tracegate.auth.deps

FastAPI dependency functions for authenticated endpoints.

Responsibilities:
- Hand the pipeline-resolved `Principal` to route handlers.
- Refuse to serve a protected handler when no principal was attached.
"""

from __future__ import annotations

from fastapi import HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED

from tracegate.auth.models import Principal


def optional_principal(request: Request) -> Principal | None:
    return getattr(request.state, "principal", None)


def get_principal(request: Request) -> Principal:
    # Authn already ran in the security pipeline; this only guards against a missing
    # route declaration (handler mounted without a matching non-public rule).
    principal = optional_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthenticated", "reason": "authentication required"},
        )
    return principal


# --- Module Notes -----------------------------------------------------------
# Role checks do not live here: authorization is decided once, in the pipeline, against the
# capability matrix, so every decision is audited.
