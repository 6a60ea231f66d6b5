"""
tracegate.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings, DB sessions and the security components.
- Encapsulate app.state access patterns (engine/sessionmaker/monitor/audit logger).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracegate.audit.logger import AuditLogger
from tracegate.monitoring.monitor import SecurityMonitor
from tracegate.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The settings the app was built with (tests pass their own to `create_app`).
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # The sessionmaker is created on app startup in `tracegate.api.app.create_app`.
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


def monitor_dep(request: Request) -> SecurityMonitor:
    return request.app.state.monitor  # type: ignore[attr-defined]


def audit_logger_dep(request: Request) -> AuditLogger:
    return request.app.state.audit_logger  # type: ignore[attr-defined]


# --- Module Notes -----------------------------------------------------------
# The principal is not injected here; see `tracegate.auth.deps.get_principal`.
