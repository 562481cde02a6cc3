from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from agent_analytics.api.deps import get_db
from agent_analytics.main import app


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test basic health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "agent-analytics"}


@pytest.mark.asyncio
async def test_readiness_check(client: AsyncClient):
    """Test readiness check endpoint (verifies the storage backend)."""
    response = await client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_readiness_error_does_not_leak_details():
    """Test that readiness errors don't expose internal storage details."""
    mock_db = AsyncMock()
    mock_db.fetch_one = AsyncMock(
        side_effect=Exception("Connection refused to db.internal.corp:5432 - password auth failed")
    )

    app.dependency_overrides[get_db] = lambda: mock_db

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")
            assert response.status_code == 503
            response_text = response.text.lower()
            # Should NOT contain internal details
            assert "db.internal" not in response_text
            assert "5432" not in response_text
            assert "password" not in response_text
            # Should contain generic message
            assert "not ready" in response_text
    finally:
        app.dependency_overrides.clear()
