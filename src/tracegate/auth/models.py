"""
tracegate.auth.models

Auth domain models.

Responsibilities:
- Define the closed set of platform roles.
- Define the authenticated identity type (`Principal`) produced per request.
- Define the credential records resolved by lookup collaborators (API keys, sessions).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass

from tracegate.observability.logging import get_logger

log = get_logger(__name__)


class Role(enum.StrEnum):
    # No implicit hierarchy: permissions are granted per role in the capability matrix.
    admin = "admin"
    moderator = "moderator"
    manufacturer = "manufacturer"
    distributor = "distributor"
    retailer = "retailer"
    consumer = "consumer"


def parse_roles(raw: Iterable[object]) -> frozenset[Role]:
    # Unknown role names are dropped rather than failing the whole credential.
    roles: set[Role] = set()
    for item in raw:
        try:
            roles.add(Role(str(item).lower()))
        except ValueError:
            log.debug("auth.unknown_role_dropped")
    return frozenset(roles)


# Width of the subject column in audit records.
MAX_SUBJECT_LENGTH = 256


class CredentialKind(enum.StrEnum):
    bearer = "bearer"
    api_key = "api_key"
    session = "session"


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity. Created per request; never persisted.
    """

    subject_id: str
    roles: frozenset[Role]
    credential: CredentialKind
    api_key_id: str | None = None
    mfa_verified: bool = False


@dataclass(frozen=True, slots=True)
class ApiKeyRecord:
    key_id: str
    secret_sha256: str
    subject_id: str
    roles: frozenset[Role]
    active: bool = True


@dataclass(frozen=True, slots=True)
class SessionRecord:
    session_id: str
    subject_id: str
    roles: frozenset[Role]
    mfa_verified: bool = False


# --- Module Notes -----------------------------------------------------------
# Keep these models minimal; they cross the pipeline, the API layer and audit records.
