from __future__ import annotations

import pytest

from tracegate.api.policy import DEFAULT_ROUTES
from tracegate.authz.capabilities import Permission, Resource
from tracegate.errors import ConfigurationError
from tracegate.pipeline.routes import MAX_ACTION_LENGTH, RoutePolicy, default_tiers, rule
from tracegate.ratelimit.limiter import RateLimitTier as T


@pytest.fixture(scope="module")
def policy() -> RoutePolicy:
    return RoutePolicy(DEFAULT_ROUTES)


@pytest.mark.parametrize(
    ("path", "tiers"),
    [
        ("/api/auth/login", (T.auth, T.api, T.general)),
        ("/api/nft/mint", (T.strict, T.api, T.general)),
        ("/api/products", (T.api, T.general)),
        ("/api/authors", (T.api, T.general)),
        ("/metrics", (T.general,)),
    ],
)
def test_default_tiers_by_mount_point(path: str, tiers) -> None:
    assert default_tiers(path) == tiers


def test_protected_route_resolution(policy: RoutePolicy) -> None:
    decl = policy.resolve("post", "/api/products")
    assert decl.action == "products.create"
    assert (decl.resource, decl.permission) == (Resource.product, Permission.write)
    assert decl.tiers == (T.api, T.general)
    assert not decl.public


def test_specific_templates_win_over_parameters(policy: RoutePolicy) -> None:
    decl = policy.resolve("POST", "/api/products/p-9/verify")
    assert decl.permission is Permission.verify
    assert decl.path_params == {"product_id": "p-9"}


def test_owner_param_is_extracted(policy: RoutePolicy) -> None:
    decl = policy.resolve("PATCH", "/api/users/u-42")
    assert decl.owner_id == "u-42"
    assert decl.permission is Permission.write

    assert policy.resolve("DELETE", "/api/users/u-42").owner_id is None


def test_mint_is_mfa_gated_on_the_strict_tier(policy: RoutePolicy) -> None:
    decl = policy.resolve("POST", "/api/nft/mint")
    assert decl.mfa_required
    assert decl.tiers[0] is T.strict


def test_security_routes(policy: RoutePolicy) -> None:
    cleanup = policy.resolve("POST", "/api/security/cleanup")
    assert (cleanup.resource, cleanup.permission) == (Resource.security, Permission.admin)
    assert cleanup.mfa_required

    dashboard = policy.resolve("GET", "/api/security/dashboard")
    assert dashboard.permission is Permission.read

    audit = policy.resolve("GET", "/api/audit")
    assert audit.resource is Resource.audit


def test_probes_and_auth_are_public(policy: RoutePolicy) -> None:
    health = policy.resolve("GET", "/healthz")
    assert health.public
    assert health.tiers == ()

    token = policy.resolve("POST", "/api/auth/token")
    assert token.public
    assert token.tiers == (T.auth, T.api, T.general)


def test_unmatched_api_paths_are_protected_without_a_resource(policy: RoutePolicy) -> None:
    decl = policy.resolve("GET", "/api/unknown/thing")
    assert not decl.public
    assert decl.resource is None and decl.permission is None
    assert decl.action == "GET /api/*"
    assert decl.tiers == (T.api, T.general)

    # Method mismatch falls through to the protected default as well.
    assert not policy.resolve("PUT", "/api/certificates").public


def test_unmatched_paths_outside_the_api_stay_public(policy: RoutePolicy) -> None:
    decl = policy.resolve("GET", "/docs")
    assert decl.public
    assert decl.action == "GET /*"
    assert decl.tiers == (T.general,)


def test_actions_fit_the_audit_column(policy: RoutePolicy) -> None:
    long_path = "/api/" + "a" * 5000
    assert policy.resolve("GET", long_path).action == "GET /api/*"
    assert len(policy.resolve("X" * 500, "/api/products").action) == MAX_ACTION_LENGTH


def test_default_action_uses_the_template() -> None:
    policy = RoutePolicy([rule("/x/{id}", "GET", resource=Resource.product, permission=Permission.read)])
    assert policy.resolve("GET", "/x/7").action == "GET /x/{id}"
    assert policy.resolve("GET", "/x/7/").path_params == {"id": "7"}
    assert policy.resolve("GET", "/x/7/extra").public
    assert policy.resolve("GET", "/x/7/extra").action == "GET /*"


@pytest.mark.parametrize(
    "bad",
    [
        rule("api/products", "GET", resource=Resource.product, permission=Permission.read),
        rule("/api/products", "GET"),
        rule("/api/products", "GET", resource=Resource.product),
        rule(
            "/api/users/{id}",
            "GET",
            resource=Resource.user,
            permission=Permission.read,
            owner_param="user_id",
        ),
    ],
    ids=["relative", "no-resource", "no-permission", "unknown-owner-param"],
)
def test_invalid_rules_are_rejected(bad) -> None:
    with pytest.raises(ConfigurationError):
        RoutePolicy([bad])
