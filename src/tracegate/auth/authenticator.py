"""
tracegate.auth.authenticator

Credential validation producing a `Principal`.

Responsibilities:
- Try bearer token, then API key, then session; the first credential that validates wins.
- Enforce the MFA flag for MFA-gated routes, reported separately from plain failures.
- Cache API key lookups (TTL-bounded, single-flight per key id).
- Never reveal which part of validation failed; details go to debug logs only.
"""

from __future__ import annotations

import asyncio
import enum
import time
import weakref
from collections.abc import Callable
from dataclasses import dataclass

from tracegate.auth.credentials import (
    ApiKeyLookup,
    Credentials,
    SessionLookup,
    secret_matches,
    split_api_key,
)
from tracegate.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from tracegate.auth.models import (
    MAX_SUBJECT_LENGTH,
    ApiKeyRecord,
    CredentialKind,
    Principal,
    parse_roles,
)
from tracegate.observability.logging import get_logger

log = get_logger(__name__)


class AuthFailure(enum.StrEnum):
    unauthenticated = "unauthenticated"
    mfa_required = "mfa_required"


@dataclass(frozen=True, slots=True)
class AuthResult:
    principal: Principal | None = None
    failure: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.principal is not None and self.failure is None


class _ApiKeyCache:
    """
    TTL cache in front of the key lookup collaborator.

    Misses for the same key id are collapsed behind one lock so a burst of requests
    produces a single lookup. Negative results are cached too.
    """

    def __init__(
        self,
        lookup: ApiKeyLookup,
        *,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lookup = lookup
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[ApiKeyRecord | None, float]] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def get(self, key_id: str) -> ApiKeyRecord | None:
        if self._ttl <= 0:
            return await self._lookup.get(key_id)

        hit = self._fresh(key_id)
        if hit is not None:
            return hit[0]

        lock = self._locks.get(key_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key_id] = lock
        async with lock:
            hit = self._fresh(key_id)
            if hit is not None:
                return hit[0]
            record = await self._lookup.get(key_id)
            self._store(key_id, record)
            return record

    def _fresh(self, key_id: str) -> tuple[ApiKeyRecord | None] | None:
        entry = self._entries.get(key_id)
        if entry is None:
            return None
        record, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key_id, None)
            return None
        return (record,)

    def _store(self, key_id: str, record: ApiKeyRecord | None) -> None:
        now = self._clock()
        if len(self._entries) >= self._max:
            for k in [k for k, (_, exp) in self._entries.items() if exp <= now]:
                del self._entries[k]
            while len(self._entries) >= self._max:
                # dicts keep insertion order; drop the oldest entry.
                del self._entries[next(iter(self._entries))]
        self._entries[key_id] = (record, now + self._ttl)


class Authenticator:
    def __init__(
        self,
        *,
        jwt_cfg: JwtConfig,
        api_keys: ApiKeyLookup,
        sessions: SessionLookup,
        api_key_cache_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jwt_cfg = jwt_cfg
        self._api_keys = _ApiKeyCache(api_keys, ttl_seconds=api_key_cache_ttl, clock=clock)
        self._sessions = sessions

    async def authenticate(self, creds: Credentials, *, mfa_required: bool = False) -> AuthResult:
        principal = None
        if creds.bearer:
            principal = self._from_bearer(creds.bearer)
        if principal is None and creds.api_key:
            principal = await self._from_api_key(creds.api_key)
        if principal is None and creds.session_id:
            principal = await self._from_session(creds.session_id)

        if principal is None:
            return AuthResult(failure=AuthFailure.unauthenticated)
        if mfa_required and not principal.mfa_verified:
            # Identity is known; the caller can run a challenge flow and retry.
            return AuthResult(principal=principal, failure=AuthFailure.mfa_required)
        return AuthResult(principal=principal)

    def _from_bearer(self, token: str) -> Principal | None:
        try:
            payload = decode_and_validate(cfg=self._jwt_cfg, token=token)
        except JwtValidationError as e:
            log.debug("auth.bearer_rejected", error_class=str(e))
            return None

        subject = str(payload.get("sub", "")).strip()
        roles_raw = payload.get("roles", [])
        if not subject or len(subject) > MAX_SUBJECT_LENGTH or not isinstance(roles_raw, list):
            log.debug("auth.bearer_rejected", error_class="MalformedClaims")
            return None
        return Principal(
            subject_id=subject,
            roles=parse_roles(roles_raw),
            credential=CredentialKind.bearer,
            mfa_verified=payload.get("mfa") is True,
        )

    async def _from_api_key(self, raw: str) -> Principal | None:
        parts = split_api_key(raw)
        if parts is None:
            log.debug("auth.api_key_rejected", error_class="MalformedKey")
            return None
        key_id, secret = parts

        record = await self._api_keys.get(key_id)
        # Hash the presented secret even for unknown ids so timing does not reveal existence.
        expected = record.secret_sha256 if record is not None else "0" * 64
        matched = secret_matches(secret, expected)
        if record is None or not matched or not record.active:
            log.debug("auth.api_key_rejected", error_class="NoMatch")
            return None
        return Principal(
            subject_id=record.subject_id,
            roles=record.roles,
            credential=CredentialKind.api_key,
            api_key_id=record.key_id,
        )

    async def _from_session(self, session_id: str) -> Principal | None:
        record = await self._sessions.get(session_id)
        if record is None:
            log.debug("auth.session_rejected", error_class="UnknownSession")
            return None
        return Principal(
            subject_id=record.subject_id,
            roles=record.roles,
            credential=CredentialKind.session,
            mfa_verified=record.mfa_verified,
        )


# --- Module Notes -----------------------------------------------------------
# Lookup faults (store unreachable) propagate out of `authenticate`; the pipeline stage
# converts them to an `unauthenticated` denial (fail-closed).
