"""
tracegate.authz.capabilities

Static capability matrix.

Responsibilities:
- Define the closed Resource/Permission variants.
- Hold the explicit (role, resource) -> permissions table and validate it is exhaustive.
- Load a replacement table from JSON (`TRACEGATE_CAPABILITY_MATRIX_PATH`).

Every (role, resource, permission) triple resolves to a definite allow/deny: the table must
list every role and every resource; unlisted permissions are denied.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

from pydantic import TypeAdapter, ValidationError

from tracegate.auth.models import Role
from tracegate.errors import CapabilityMatrixError


class Resource(enum.StrEnum):
    product = "product"
    certificate = "certificate"
    nft = "nft"
    user = "user"
    security = "security"
    audit = "audit"


class Permission(enum.StrEnum):
    read = "read"
    write = "write"
    delete = "delete"
    admin = "admin"
    verify = "verify"
    mint = "mint"
    transfer = "transfer"


Grants = Mapping[Role, Mapping[Resource, frozenset[Permission]]]

_ALL = frozenset(Permission)
_NONE: frozenset[Permission] = frozenset()
P = Permission

DEFAULT_GRANTS: Grants = {
    Role.admin: {r: _ALL for r in Resource},
    Role.moderator: {
        Resource.product: frozenset({P.read, P.write, P.verify}),
        Resource.certificate: frozenset({P.read, P.write, P.verify}),
        Resource.nft: frozenset({P.read, P.verify}),
        Resource.user: frozenset({P.read, P.write}),
        Resource.security: frozenset({P.read}),
        Resource.audit: frozenset({P.read}),
    },
    Role.manufacturer: {
        Resource.product: frozenset({P.read, P.write, P.verify}),
        Resource.certificate: frozenset({P.read, P.write, P.verify}),
        Resource.nft: frozenset({P.read, P.verify, P.mint}),
        Resource.user: _NONE,
        Resource.security: _NONE,
        Resource.audit: _NONE,
    },
    Role.distributor: {
        Resource.product: frozenset({P.read, P.write, P.verify}),
        Resource.certificate: frozenset({P.read, P.verify}),
        Resource.nft: frozenset({P.read, P.verify, P.transfer}),
        Resource.user: _NONE,
        Resource.security: _NONE,
        Resource.audit: _NONE,
    },
    Role.retailer: {
        Resource.product: frozenset({P.read, P.write, P.verify}),
        Resource.certificate: frozenset({P.read, P.verify}),
        Resource.nft: frozenset({P.read, P.verify, P.transfer}),
        Resource.user: _NONE,
        Resource.security: _NONE,
        Resource.audit: _NONE,
    },
    Role.consumer: {
        Resource.product: frozenset({P.read, P.verify}),
        Resource.certificate: frozenset({P.read, P.verify}),
        Resource.nft: frozenset({P.read, P.verify}),
        Resource.user: _NONE,
        Resource.security: _NONE,
        Resource.audit: _NONE,
    },
}

# Actions on a caller's own record: allowed for the owner even without a role grant.
OWNER_SCOPED: frozenset[tuple[Resource, Permission]] = frozenset(
    {
        (Resource.user, P.read),
        (Resource.user, P.write),
        (Resource.product, P.write),
        (Resource.product, P.delete),
        (Resource.nft, P.transfer),
    }
)


class CapabilityMatrix:
    """
    Fully expanded, immutable lookup table.
    """

    def __init__(
        self,
        grants: Grants,
        *,
        owner_scoped: frozenset[tuple[Resource, Permission]] = OWNER_SCOPED,
    ) -> None:
        _check_exhaustive(grants)
        table: dict[tuple[Role, Resource, Permission], bool] = {}
        for role in Role:
            for resource in Resource:
                granted = grants[role][resource]
                for permission in Permission:
                    table[(role, resource, permission)] = permission in granted
        self._table = MappingProxyType(table)
        self._owner_scoped = owner_scoped

    def allows(self, role: Role, resource: Resource, permission: Permission) -> bool:
        return self._table[(role, resource, permission)]

    def is_owner_scoped(self, resource: Resource, permission: Permission) -> bool:
        return (resource, permission) in self._owner_scoped

    def granted(self, role: Role, resource: Resource) -> frozenset[Permission]:
        return frozenset(p for p in Permission if self._table[(role, resource, p)])

    def __len__(self) -> int:
        return len(self._table)


def _check_exhaustive(grants: Grants) -> None:
    missing_roles = [r.value for r in Role if r not in grants]
    if missing_roles:
        raise CapabilityMatrixError(f"capability matrix missing roles: {missing_roles}")
    for role in Role:
        row = grants[role]
        missing = [r.value for r in Resource if r not in row]
        if missing:
            raise CapabilityMatrixError(
                f"capability matrix row {role.value!r} missing resources: {missing}"
            )
        extra = [str(r) for r in row if r not in set(Resource)]
        if extra:
            raise CapabilityMatrixError(
                f"capability matrix row {role.value!r} has unknown resources: {extra}"
            )


_MATRIX_FILE = TypeAdapter(dict[Role, dict[Resource, list[Permission]]])


def load_capability_matrix(path: Path | None) -> CapabilityMatrix:
    if path is None:
        return CapabilityMatrix(DEFAULT_GRANTS)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        parsed = _MATRIX_FILE.validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise CapabilityMatrixError(f"cannot load capability matrix from {path}: {e}") from e

    grants = {
        role: {resource: frozenset(perms) for resource, perms in row.items()}
        for role, row in parsed.items()
    }
    return CapabilityMatrix(grants)


# --- Module Notes -----------------------------------------------------------
# The JSON file format mirrors DEFAULT_GRANTS: {"manufacturer": {"product": ["read", ...]}}.
# Unknown role/resource/permission names fail validation at startup.
