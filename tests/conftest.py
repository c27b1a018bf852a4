"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from transit_feeds.cache.hybrid import HybridCache
from transit_feeds.config import Settings
from transit_feeds.main import app
from transit_feeds.routers.transit import get_transit_service
from transit_feeds.services.transit import TransitService

from .fixtures.fakes import FakeClock


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        ac_transit_token="test-token",
        redis_url=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> HybridCache:
    """Memory-only cache on a fake clock."""
    return HybridCache(clock=clock)


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an AsyncClient whose requests are answered by ``handler``."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def mock_service() -> Any:
    """TransitService stand-in with async query methods."""
    service = MagicMock(spec=TransitService)
    for name in (
        "fetch_bus_positions",
        "fetch_bus_stop_profiles",
        "fetch_bus_stop_profile",
        "fetch_bus_stop_predictions",
        "fetch_service_alerts",
        "fetch_system_time",
    ):
        setattr(service, name, AsyncMock())
    return service


@pytest.fixture
async def client(mock_service: Any) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing, with the service layer mocked."""
    app.dependency_overrides[get_transit_service] = lambda: mock_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def client_no_context() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the bare app (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
