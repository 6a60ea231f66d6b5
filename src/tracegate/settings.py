"""
tracegate.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for every pipeline stage.
- Hide secrets from repr/logging (JWT secret, API key digests).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiKeyConfig(BaseModel):
    """
    Statically provisioned API key. Only the SHA-256 digest of the secret is configured.
    """

    key_id: str = Field(min_length=1, max_length=128)
    secret_sha256: str = Field(min_length=64, max_length=64, repr=False)
    subject_id: str = Field(min_length=1, max_length=256)
    roles: list[str] = Field(default_factory=list)
    active: bool = True


class Settings(BaseSettings):
    """
    Enterprise pattern:
    - Strict env-driven configuration
    - Defaults safe for local dev
    - Single settings object injected across layers
    """

    model_config = SettingsConfigDict(env_prefix="TRACEGATE_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "tracegate"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080
    # Comma-separated proxy addresses whose X-Forwarded-For is trusted for the client IP.
    trusted_proxies: str = "127.0.0.1"

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "tracechain-api"
    jwt_audience: str = "tracechain-client"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)
    token_ttl_minutes: int = Field(default=60, ge=1)
    api_keys: list[ApiKeyConfig] = Field(default_factory=list, repr=False)
    api_key_cache_ttl_seconds: float = Field(default=30.0, ge=0)
    session_cookie_name: str = "tracegate_session"

    # Request guard
    max_body_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Rate limiting (limit per window, window in seconds)
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_fail_open: bool = True
    rate_general_limit: int = Field(default=100, gt=0)
    rate_general_window_seconds: float = Field(default=15 * 60, gt=0)
    rate_auth_limit: int = Field(default=5, gt=0)
    rate_auth_window_seconds: float = Field(default=15 * 60, gt=0)
    rate_api_limit: int = Field(default=30, gt=0)
    rate_api_window_seconds: float = Field(default=60, gt=0)
    rate_strict_limit: int = Field(default=10, gt=0)
    rate_strict_window_seconds: float = Field(default=60, gt=0)

    # Authorization
    capability_matrix_path: Path | None = None

    # Audit / persistence
    audit_sink: Literal["log", "store", "database"] = "database"
    database_url: str = "sqlite+aiosqlite:///./tracegate.db"
    # Upper bound on one sink write; a slower sink is reported as an audit fault.
    audit_write_timeout_seconds: float = Field(default=2.0, gt=0)

    # Monitoring
    monitor_half_life_seconds: float = Field(default=15 * 60, gt=0)
    monitor_alert_threshold: float = Field(default=20.0, gt=0)
    monitor_queue_size: int = Field(default=10_000, gt=0)
    monitor_retention_days: int = Field(default=30, gt=0)

    security_headers: bool = True
    content_security_policy: str = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
        "font-src 'self' https://fonts.gstatic.com; "
        "img-src 'self' data: https: blob:; "
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "connect-src 'self' https://api.polygonscan.com https://api.etherscan.io "
        "https://ipfs.io https://gateway.pinata.cloud; "
        "frame-src 'none'; object-src 'none'; media-src 'self'; "
        "manifest-src 'self'; base-uri 'self'; form-action 'self'; "
        "upgrade-insecure-requests"
    )
    # Comma-separated browser origins allowed to call the API with credentials.
    cors_allowed_origins: str = (
        "http://localhost:3000,http://localhost:3001,http://127.0.0.1:3000,"
        "http://127.0.0.1:3001,https://app.tracechain.com,https://verify.tracechain.com,"
        "https://admin.tracechain.com"
    )
    cors_max_age_seconds: int = Field(default=86_400, ge=0)

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Tier limits are turned into `ratelimit.limiter.TierPolicy` objects by
# `ratelimit.limiter.tier_policies_from_settings`; keep the field names aligned.
