"""
tests.conftest

Shared fixtures.

Responsibilities:
- Injected clocks so window/decay arithmetic is deterministic.
- Test settings pointing the DB at a temp directory.
- An in-process HTTP client that runs the app startup/shutdown hooks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import pytest

from tracegate.settings import Settings

TEST_JWT_SECRET = "test-signing-secret-with-enough-bytes-0123456789"


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_settings(tmp_path: Path):
    def factory(**overrides) -> Settings:
        values = {
            "env": "test",
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'tracegate-test.db'}",
            "jwt_secret": TEST_JWT_SECRET,
            "audit_sink": "log",
            "log_level": "WARNING",
        }
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture
def serve():
    """
    `async with serve(app) as client:` runs startup, yields an httpx client, then shutdown.
    """

    @asynccontextmanager
    async def run(app):
        # httpx ASGITransport does not manage lifespan automatically; do it explicitly.
        await app.router.startup()
        try:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                yield client
        finally:
            await app.router.shutdown()

    return run
