"""
tracegate.authz.authorizer

Role/resource authorization against the capability matrix.

Responsibilities:
- Allow when any of the principal's roles is granted the (resource, permission) pair.
- Fall back to ownership for owner-scoped actions.
- Stay stateless: the same inputs always produce the same answer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from tracegate.auth.models import Principal, Role
from tracegate.authz.capabilities import CapabilityMatrix, Permission, Resource


class AuthzBasis(enum.StrEnum):
    role_grant = "role_grant"
    ownership = "ownership"
    no_grant = "no_grant"


@dataclass(frozen=True, slots=True)
class AuthzDecision:
    allowed: bool
    basis: AuthzBasis
    granting_role: Role | None = None


class Authorizer:
    def __init__(self, matrix: CapabilityMatrix) -> None:
        self._matrix = matrix

    @property
    def matrix(self) -> CapabilityMatrix:
        return self._matrix

    def authorize(
        self,
        principal: Principal,
        resource: Resource,
        permission: Permission,
        owner_id: str | None = None,
    ) -> AuthzDecision:
        # Sorted so the reported granting role is deterministic.
        for role in sorted(principal.roles):
            if self._matrix.allows(role, resource, permission):
                return AuthzDecision(True, AuthzBasis.role_grant, role)

        if (
            owner_id is not None
            and self._matrix.is_owner_scoped(resource, permission)
            and principal.subject_id == owner_id
        ):
            return AuthzDecision(True, AuthzBasis.ownership)

        return AuthzDecision(False, AuthzBasis.no_grant)


# --- Module Notes -----------------------------------------------------------
# Rate-limit and anomaly state are deliberately not inputs here, so an audit entry can be
# re-derived from (principal, resource, permission, owner) alone.
