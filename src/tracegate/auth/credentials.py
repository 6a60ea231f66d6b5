"""
tracegate.auth.credentials

Credential extraction and lookup collaborators.

Responsibilities:
- Pull the three supported credential forms out of a request descriptor.
- Define the lookup interfaces for API keys and sessions (backed elsewhere in production).
- Provide process-local implementations for configuration-provisioned keys and tests.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol

from tracegate.auth.models import ApiKeyRecord, SessionRecord, parse_roles
from tracegate.settings import ApiKeyConfig

API_KEY_HEADER = "x-api-key"
SESSION_HEADER = "x-session-id"


@dataclass(frozen=True, slots=True)
class Credentials:
    bearer: str | None = None
    api_key: str | None = None
    session_id: str | None = None

    @property
    def present(self) -> bool:
        return bool(self.bearer or self.api_key or self.session_id)


def extract_credentials(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    *,
    session_cookie: str,
) -> Credentials:
    # Headers are expected lower-cased (ASGI convention).
    bearer = None
    authz = headers.get("authorization", "")
    scheme, _, value = authz.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        bearer = value.strip()

    api_key = headers.get(API_KEY_HEADER, "").strip() or None
    session_id = cookies.get(session_cookie) or headers.get(SESSION_HEADER) or None
    return Credentials(bearer=bearer, api_key=api_key, session_id=session_id)


def split_api_key(raw: str) -> tuple[str, str] | None:
    # Presented form: "<key_id>.<secret>"; the key id is an opaque lookup handle.
    key_id, sep, secret = raw.partition(".")
    if not sep or not key_id or not secret:
        return None
    return key_id, secret


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def secret_matches(secret: str, expected_sha256: str) -> bool:
    return hmac.compare_digest(hash_secret(secret), expected_sha256.lower())


class ApiKeyLookup(Protocol):
    async def get(self, key_id: str) -> ApiKeyRecord | None: ...


class SessionLookup(Protocol):
    async def get(self, session_id: str) -> SessionRecord | None: ...


class StaticApiKeyStore:
    """
    API keys provisioned through settings (`TRACEGATE_API_KEYS`).
    """

    def __init__(self, records: Iterable[ApiKeyRecord] = ()) -> None:
        self._records = {r.key_id: r for r in records}

    @classmethod
    def from_config(cls, configs: Iterable[ApiKeyConfig]) -> StaticApiKeyStore:
        return cls(
            ApiKeyRecord(
                key_id=c.key_id,
                secret_sha256=c.secret_sha256.lower(),
                subject_id=c.subject_id,
                roles=parse_roles(c.roles),
                active=c.active,
            )
            for c in configs
        )

    async def get(self, key_id: str) -> ApiKeyRecord | None:
        return self._records.get(key_id)


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}

    def put(self, record: SessionRecord) -> None:
        self._sessions[record.session_id] = record

    async def get(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)


# --- Module Notes -----------------------------------------------------------
# Real deployments back ApiKeyLookup/SessionLookup with the platform's user store; the
# authenticator only depends on the protocols.
