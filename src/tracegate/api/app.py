"""
tracegate.api.app

FastAPI app factory for the tracegate security gateway.

Responsibilities:
- Build the FastAPI application and register routers/middleware (CORS allowlist outermost).
- Initialize and dispose shared infrastructure (DB engine/session factory, counter store,
  security monitor worker).
- Assemble the security pipeline once, in its fixed stage order.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracegate import __version__
from tracegate.api.middleware import SecurityPipelineMiddleware
from tracegate.api.policy import DEFAULT_ROUTES
from tracegate.api.routers.audit import router as audit_router
from tracegate.api.routers.dev_auth import router as dev_auth_router
from tracegate.api.routers.health import router as health_router
from tracegate.api.routers.security import router as security_router
from tracegate.audit.logger import AuditLogger
from tracegate.audit.sinks import DatabaseRecordSink, LogRecordSink, RecordSink, StoreRecordSink
from tracegate.auth.authenticator import Authenticator
from tracegate.auth.credentials import InMemorySessionStore, SessionLookup, StaticApiKeyStore
from tracegate.auth.jwt import JwtConfig
from tracegate.authz.authorizer import Authorizer
from tracegate.authz.capabilities import load_capability_matrix
from tracegate.db.init_db import init_db
from tracegate.db.session import create_engine, create_sessionmaker
from tracegate.inspection.injection import InjectionDetector
from tracegate.inspection.sanitizer import InputSanitizer
from tracegate.monitoring.monitor import SecurityMonitor
from tracegate.observability.logging import configure_logging, get_logger
from tracegate.observability.middleware import RequestContextMiddleware
from tracegate.pipeline.guard import RequestGuard
from tracegate.pipeline.routes import RoutePolicy, RouteRule
from tracegate.pipeline.runner import SecurityPipeline, build_stages
from tracegate.ratelimit.limiter import RateLimiter, tier_policies_from_settings
from tracegate.ratelimit.stores import CounterStore, InMemoryCounterStore, RedisCounterStore
from tracegate.settings import Settings

log = get_logger(__name__)


def build_counter_store(settings: Settings) -> CounterStore:
    if settings.rate_limit_backend == "redis":
        return RedisCounterStore.from_url(settings.redis_url)
    return InMemoryCounterStore()


def build_record_sink(
    settings: Settings,
    *,
    store: CounterStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> RecordSink:
    if settings.audit_sink == "database":
        return DatabaseRecordSink(session_factory)
    if settings.audit_sink == "store":
        return StoreRecordSink(store)
    return LogRecordSink()


def create_app(
    *,
    settings: Settings,
    sessions: SessionLookup | None = None,
    counter_store: CounterStore | None = None,
    routes: Iterable[RouteRule] = DEFAULT_ROUTES,
) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="Tracegate Security Gateway",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    # Policy tables are validated here so bad configuration fails before serving traffic.
    app.state.settings = settings
    app.state.route_policy = RoutePolicy(routes)
    app.state.capability_matrix = load_capability_matrix(settings.capability_matrix_path)
    app.state.session_store = sessions if sessions is not None else InMemorySessionStore()
    tier_policies = tier_policies_from_settings(settings)

    # Last added runs first: request ids are assigned before the pipeline sees the request.
    app.add_middleware(
        SecurityPipelineMiddleware,
        security_headers=settings.security_headers,
        content_security_policy=settings.content_security_policy,
    )
    app.add_middleware(RequestContextMiddleware)
    # Outermost, so preflights are answered before the pipeline and every response carries
    # the CORS headers.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "X-API-Key",
            "X-CSRF-Token",
            "X-Session-Id",
            "X-Request-ID",
        ],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=settings.cors_max_age_seconds,
    )

    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(security_router)
    app.include_router(audit_router)

    @app.on_event("startup")
    async def _startup() -> None:
        log.info("startup", env=settings.env, rate_limit_backend=settings.rate_limit_backend)
        # Create the async DB engine and session factory once and stash them on app.state.
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Dev/test convenience: create tables automatically. Prod should use Alembic migrations.
            await init_db(engine)

        store = counter_store if counter_store is not None else build_counter_store(settings)
        app.state.counter_store = store

        audit_logger = AuditLogger(
            build_record_sink(settings, store=store, session_factory=app.state.sessionmaker),
            write_timeout=settings.audit_write_timeout_seconds,
        )
        monitor = SecurityMonitor(
            half_life_seconds=settings.monitor_half_life_seconds,
            alert_threshold=settings.monitor_alert_threshold,
            queue_size=settings.monitor_queue_size,
            retention=timedelta(days=settings.monitor_retention_days),
        )
        await monitor.start()
        app.state.audit_logger = audit_logger
        app.state.monitor = monitor

        authenticator = Authenticator(
            jwt_cfg=JwtConfig.from_settings(settings),
            api_keys=StaticApiKeyStore.from_config(settings.api_keys),
            sessions=app.state.session_store,
            api_key_cache_ttl=settings.api_key_cache_ttl_seconds,
        )
        stages = build_stages(
            guard=RequestGuard(settings.max_body_bytes, settings.request_timeout_seconds),
            sanitizer=InputSanitizer(),
            detector=InjectionDetector(),
            limiter=RateLimiter(store=store, policies=tier_policies),
            authenticator=authenticator,
            authorizer=Authorizer(app.state.capability_matrix),
            session_cookie=settings.session_cookie_name,
            rate_limit_fail_open=settings.rate_limit_fail_open,
        )
        app.state.pipeline = SecurityPipeline(
            stages=stages,
            audit=audit_logger,
            monitor=monitor,
            timeout_seconds=settings.request_timeout_seconds,
        )
        log.info("pipeline.ready", stages=list(app.state.pipeline.stage_names))

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        monitor = getattr(app.state, "monitor", None)
        if monitor is not None:
            await monitor.stop()
        store = getattr(app.state, "counter_store", None)
        if store is not None:
            await store.close()
        # Dispose the engine to close pools/FDs gracefully.
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("shutdown")

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; request-time security decisions stay in `tracegate.pipeline`.
