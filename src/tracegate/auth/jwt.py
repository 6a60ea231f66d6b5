"""
tracegate.auth.jwt

JWT issuing and validation helpers.

Responsibilities:
- Issue short-lived JWTs (dev token endpoint, tests).
- Decode and validate JWTs with strict claim requirements (iss/aud/exp/iat/sub).

Note:
- Production deployments often prefer RS256 + JWKS; HS256 keeps the shared-secret setup simple.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from tracegate.settings import Settings


@dataclass(frozen=True, slots=True)
class JwtConfig:
    # Algorithm/issuer/audience are enforced during decoding.
    alg: str
    issuer: str
    audience: str
    secret: str

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        return cls(
            alg=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            secret=settings.jwt_secret,
        )


class JwtValidationError(Exception):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: Iterable[str],
    ttl: timedelta = timedelta(hours=1),
    mfa_verified: bool = False,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(tz=UTC)
    # Keep payload minimal and stable; the authenticator only reads sub/roles/mfa.
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": [str(r) for r in roles],
        "mfa": bool(mfa_verified),
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        # jwt.decode enforces signature + registered claims (issuer/audience/exp, etc.).
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={
                "require": ["exp", "iat", "iss", "aud", "sub"],
            },
        )
    except InvalidTokenError as e:
        raise JwtValidationError(type(e).__name__) from e


# --- Module Notes -----------------------------------------------------------
# JwtValidationError carries only the PyJWT error class name; callers must still map it to
# a generic "invalid credentials" reason before anything reaches a client.
