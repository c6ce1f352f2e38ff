"""Shared test fixtures."""

import os

# Settings() requires JWT_SECRET; set it before anything imports config.settings
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")
os.environ.setdefault("CUSTOMER_SERVER_SECRET", "test-customer-secret")
os.environ.setdefault("EXTERNAL_VENDOR_SECRET", "test-partner-secret")
os.environ.setdefault("INTERNAL_SERVICE_SECRET", "test-internal-secret")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from src.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
