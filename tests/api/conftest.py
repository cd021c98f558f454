"""Shared fixtures for API endpoint tests."""

import httpx
import pytest
import pytest_asyncio

from flowtrack.api.middleware.rate_limit import limiter


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to avoid 429s."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def app(test_config, test_database, routes):
    """The real application wired to the temporary test database.

    ASGITransport does not run the lifespan, so services are attached here.
    """
    from flowtrack.main import app, attach_services

    attach_services(app, test_config, test_database)
    return app


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
