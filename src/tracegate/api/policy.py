"""
tracegate.api.policy

Route security table for the traceability API.

Responsibilities:
- Declare, per platform route, the (resource, permission) pair the caller needs, the owner
  path parameter for owner-scoped actions, MFA gating and rate tiers.

Handlers for most of these routes live in the platform services behind the gateway; the
table still governs them because every request crosses the pipeline first.
"""

from __future__ import annotations

from tracegate.authz.capabilities import Permission as P
from tracegate.authz.capabilities import Resource as R
from tracegate.pipeline.routes import RouteRule, rule

DEFAULT_ROUTES: tuple[RouteRule, ...] = (
    # Probes: inspected but never rate limited.
    rule("/healthz", "GET", public=True, tiers=(), action="health.liveness"),
    rule("/readyz", "GET", public=True, tiers=(), action="health.readiness"),
    rule("/api/health/*", "GET", public=True, tiers=(), action="health.detail"),
    # Login and token flows: anonymous, auth tier.
    rule("/api/auth/*", public=True, action="auth.flow"),
    # Products
    rule("/api/products", "GET", resource=R.product, permission=P.read, action="products.list"),
    rule("/api/products", "POST", resource=R.product, permission=P.write, action="products.create"),
    rule(
        "/api/products/{product_id}/verify",
        "POST",
        resource=R.product,
        permission=P.verify,
        action="products.verify",
    ),
    rule(
        "/api/products/{product_id}",
        "GET",
        resource=R.product,
        permission=P.read,
        action="products.read",
    ),
    rule(
        "/api/products/{product_id}",
        ("PUT", "PATCH"),
        resource=R.product,
        permission=P.write,
        action="products.update",
    ),
    rule(
        "/api/products/{product_id}",
        "DELETE",
        resource=R.product,
        permission=P.delete,
        action="products.delete",
    ),
    # Certificates
    rule(
        "/api/certificates",
        "GET",
        resource=R.certificate,
        permission=P.read,
        action="certificates.list",
    ),
    rule(
        "/api/certificates",
        "POST",
        resource=R.certificate,
        permission=P.write,
        action="certificates.issue",
    ),
    rule(
        "/api/certificates/{certificate_id}/verify",
        "POST",
        resource=R.certificate,
        permission=P.verify,
        action="certificates.verify",
    ),
    rule(
        "/api/certificates/{certificate_id}",
        "GET",
        resource=R.certificate,
        permission=P.read,
        action="certificates.read",
    ),
    # NFTs: minting is MFA-gated and on the strict tier (derived from the path).
    rule(
        "/api/nft/mint",
        "POST",
        resource=R.nft,
        permission=P.mint,
        mfa_required=True,
        action="nft.mint",
    ),
    rule(
        "/api/nft/{token_id}/transfer",
        "POST",
        resource=R.nft,
        permission=P.transfer,
        action="nft.transfer",
    ),
    rule(
        "/api/nft/{token_id}/verify",
        "POST",
        resource=R.nft,
        permission=P.verify,
        action="nft.verify",
    ),
    rule("/api/nft/*", "GET", resource=R.nft, permission=P.read, action="nft.read"),
    # Users: profile read/update is owner-scoped.
    rule("/api/users", "GET", resource=R.user, permission=P.read, action="users.list"),
    rule(
        "/api/users/{user_id}",
        "GET",
        resource=R.user,
        permission=P.read,
        owner_param="user_id",
        action="users.read",
    ),
    rule(
        "/api/users/{user_id}",
        ("PUT", "PATCH"),
        resource=R.user,
        permission=P.write,
        owner_param="user_id",
        action="users.update",
    ),
    rule(
        "/api/users/{user_id}",
        "DELETE",
        resource=R.user,
        permission=P.delete,
        action="users.delete",
    ),
    # Security monitoring and audit review
    rule(
        "/api/security/cleanup",
        "POST",
        resource=R.security,
        permission=P.admin,
        mfa_required=True,
        action="security.cleanup",
    ),
    rule(
        "/api/security/*",
        "GET",
        resource=R.security,
        permission=P.read,
        action="security.read",
    ),
    rule("/api/audit/*", "GET", resource=R.audit, permission=P.read, action="audit.read"),
)


# --- Module Notes -----------------------------------------------------------
# First match wins: specific templates (".../verify", "/api/nft/mint") precede wildcards.
