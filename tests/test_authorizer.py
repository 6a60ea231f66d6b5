from __future__ import annotations

import json
from pathlib import Path

import pytest

from tracegate.auth.models import CredentialKind, Principal, Role
from tracegate.authz.authorizer import AuthzBasis, Authorizer
from tracegate.authz.capabilities import (
    DEFAULT_GRANTS,
    CapabilityMatrix,
    Permission,
    Resource,
    load_capability_matrix,
)
from tracegate.errors import CapabilityMatrixError


def _principal(*roles: Role, subject: str = "u-1") -> Principal:
    return Principal(subject_id=subject, roles=frozenset(roles), credential=CredentialKind.bearer)


@pytest.fixture
def authorizer() -> Authorizer:
    return Authorizer(CapabilityMatrix(DEFAULT_GRANTS))


def test_every_triple_matches_the_table(authorizer: Authorizer) -> None:
    assert len(authorizer.matrix) == len(Role) * len(Resource) * len(Permission)
    for role in Role:
        for resource in Resource:
            for permission in Permission:
                decision = authorizer.authorize(_principal(role), resource, permission)
                assert decision.allowed is (permission in DEFAULT_GRANTS[role][resource])


def test_manufacturer_grants(authorizer: Authorizer) -> None:
    manufacturer = _principal(Role.manufacturer)

    write = authorizer.authorize(manufacturer, Resource.product, Permission.write)
    assert write.allowed
    assert write.basis is AuthzBasis.role_grant
    assert write.granting_role is Role.manufacturer

    admin = authorizer.authorize(manufacturer, Resource.security, Permission.admin)
    assert not admin.allowed
    assert admin.basis is AuthzBasis.no_grant


def test_roles_are_a_union(authorizer: Authorizer) -> None:
    both = _principal(Role.consumer, Role.manufacturer)
    assert authorizer.authorize(both, Resource.nft, Permission.mint).allowed
    assert not authorizer.authorize(_principal(Role.consumer), Resource.nft, Permission.mint).allowed


def test_ownership_fallback(authorizer: Authorizer) -> None:
    consumer = _principal(Role.consumer, subject="u-7")

    own = authorizer.authorize(consumer, Resource.user, Permission.write, owner_id="u-7")
    assert own.allowed
    assert own.basis is AuthzBasis.ownership

    other = authorizer.authorize(consumer, Resource.user, Permission.write, owner_id="u-8")
    assert not other.allowed

    # Ownership only applies to owner-scoped pairs.
    not_scoped = authorizer.authorize(consumer, Resource.user, Permission.delete, owner_id="u-7")
    assert not not_scoped.allowed


def test_no_roles_is_denied(authorizer: Authorizer) -> None:
    assert not authorizer.authorize(_principal(), Resource.product, Permission.read).allowed


def test_missing_role_row_is_rejected() -> None:
    partial = {role: row for role, row in DEFAULT_GRANTS.items() if role is not Role.retailer}
    with pytest.raises(CapabilityMatrixError):
        CapabilityMatrix(partial)


def test_missing_resource_is_rejected() -> None:
    grants = dict(DEFAULT_GRANTS)
    grants[Role.consumer] = {Resource.product: frozenset({Permission.read})}
    with pytest.raises(CapabilityMatrixError):
        CapabilityMatrix(grants)


def _as_json(grants) -> dict:
    return {
        role.value: {resource.value: sorted(p.value for p in perms) for resource, perms in row.items()}
        for role, row in grants.items()
    }


def test_load_matrix_from_json(tmp_path: Path) -> None:
    data = _as_json(DEFAULT_GRANTS)
    data["consumer"]["nft"] = ["mint", "read"]
    path = tmp_path / "matrix.json"
    path.write_text(json.dumps(data), encoding="utf-8")

    matrix = load_capability_matrix(path)
    assert matrix.allows(Role.consumer, Resource.nft, Permission.mint)
    assert not matrix.allows(Role.consumer, Resource.nft, Permission.verify)


def test_load_matrix_defaults_without_path() -> None:
    matrix = load_capability_matrix(None)
    assert matrix.granted(Role.moderator, Resource.security) == frozenset({Permission.read})


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d["consumer"].update({"product": ["read", "fly"]}),
        lambda d: d.update({"pirate": {}}),
        lambda d: d.pop("admin"),
    ],
    ids=["unknown-permission", "unknown-role", "missing-role"],
)
def test_invalid_json_matrix_is_rejected(tmp_path: Path, mutate) -> None:
    data = _as_json(DEFAULT_GRANTS)
    mutate(data)
    path = tmp_path / "matrix.json"
    path.write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(CapabilityMatrixError):
        load_capability_matrix(path)


def test_unreadable_matrix_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CapabilityMatrixError):
        load_capability_matrix(path)
    with pytest.raises(CapabilityMatrixError):
        load_capability_matrix(tmp_path / "absent.json")
