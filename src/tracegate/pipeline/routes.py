"""
tracegate.pipeline.routes

Declarative route security policy.

Responsibilities:
- Compile an ordered table of route rules once at startup.
- Resolve (method, path) to the routing-supplied declaration the pipeline consumes:
  resource, permission, owner id, rate tiers, public/MFA flags and an audit action name.
- Reject rules that are protected but do not name a resource and permission.
- Fail closed for API paths no rule covers.

Templates use `{name}` for one path segment and a trailing `/*` for any suffix.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from tracegate.authz.capabilities import Permission, Resource
from tracegate.errors import ConfigurationError
from tracegate.ratelimit.limiter import RateLimitTier

T = RateLimitTier

# Width of the audit action column.
MAX_ACTION_LENGTH = 128


def default_tiers(path: str) -> tuple[RateLimitTier, ...]:
    """
    Tier assignment by mount point: auth endpoints, NFT minting, the rest of the API,
    then everything else. Every path also counts against the general tier.
    """

    if path == "/api/auth" or path.startswith("/api/auth/"):
        return (T.auth, T.api, T.general)
    if path == "/api/nft/mint" or path.startswith("/api/nft/mint/"):
        return (T.strict, T.api, T.general)
    if path == "/api" or path.startswith("/api/"):
        return (T.api, T.general)
    return (T.general,)


@dataclass(frozen=True, slots=True)
class RouteDeclaration:
    action: str
    resource: Resource | None = None
    permission: Permission | None = None
    owner_id: str | None = None
    tiers: tuple[RateLimitTier, ...] = (T.general,)
    public: bool = False
    mfa_required: bool = False
    path_params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RouteRule:
    template: str
    methods: frozenset[str] | None = None
    resource: Resource | None = None
    permission: Permission | None = None
    owner_param: str | None = None
    # None: derive from the path via `default_tiers`; () exempts the route.
    tiers: tuple[RateLimitTier, ...] | None = None
    public: bool = False
    mfa_required: bool = False
    action: str | None = None


_PARAM_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _compile(template: str) -> re.Pattern[str]:
    wildcard = template.endswith("/*")
    base = template[:-2] if wildcard else template
    pattern = ""
    pos = 0
    for m in _PARAM_RE.finditer(base):
        pattern += re.escape(base[pos : m.start()]) + f"(?P<{m.group(1)}>[^/]+)"
        pos = m.end()
    pattern += re.escape(base[pos:])
    if wildcard:
        pattern += r"(?:/.*)?"
    return re.compile(f"^{pattern}/?$")


@dataclass(frozen=True, slots=True)
class _CompiledRule:
    rule: RouteRule
    pattern: re.Pattern[str]


class RoutePolicy:
    def __init__(self, rules: Iterable[RouteRule]) -> None:
        compiled = []
        for rule in rules:
            _validate(rule)
            compiled.append(_CompiledRule(rule, _compile(rule.template)))
        self._rules = tuple(compiled)

    def __len__(self) -> int:
        return len(self._rules)

    def resolve(self, method: str, path: str) -> RouteDeclaration:
        method = method.upper()
        for c in self._rules:
            if c.rule.methods is not None and method not in c.rule.methods:
                continue
            m = c.pattern.match(path)
            if m is None:
                continue
            rule = c.rule
            params = MappingProxyType(dict(m.groupdict()))
            return RouteDeclaration(
                action=(rule.action or f"{method} {rule.template}")[:MAX_ACTION_LENGTH],
                resource=rule.resource,
                permission=rule.permission,
                owner_id=params.get(rule.owner_param) if rule.owner_param else None,
                tiers=rule.tiers if rule.tiers is not None else default_tiers(path),
                public=rule.public,
                mfa_required=rule.mfa_required,
                path_params=params,
            )
        # Unmatched API paths are protected but name no resource, so the authorize stage denies
        # them. Anything else reaches the router's 404 after the generic checks.
        api = path == "/api" or path.startswith("/api/")
        return RouteDeclaration(
            action=f"{method} {'/api/*' if api else '/*'}"[:MAX_ACTION_LENGTH],
            tiers=default_tiers(path),
            public=not api,
        )


def _validate(rule: RouteRule) -> None:
    if not rule.template.startswith("/"):
        raise ConfigurationError(f"route template must start with '/': {rule.template!r}")
    if not rule.public and (rule.resource is None or rule.permission is None):
        raise ConfigurationError(
            f"protected route {rule.template!r} must declare a resource and permission"
        )
    if rule.owner_param is not None and f"{{{rule.owner_param}}}" not in rule.template:
        raise ConfigurationError(
            f"route {rule.template!r} names owner param {rule.owner_param!r} not in its path"
        )


def rule(
    template: str,
    methods: str | Iterable[str] | None = None,
    **kwargs,
) -> RouteRule:
    # Convenience constructor for policy tables: rule("/api/x", "GET", resource=..., ...).
    if isinstance(methods, str):
        methods = [methods]
    return RouteRule(
        template=template,
        methods=frozenset(m.upper() for m in methods) if methods is not None else None,
        **kwargs,
    )


# --- Module Notes -----------------------------------------------------------
# Rules are matched first-to-last; put specific templates before wildcard ones.
