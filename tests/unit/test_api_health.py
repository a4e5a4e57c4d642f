from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from src.api.routes import health

OK = {"status": "ok"}


@pytest.mark.asyncio
async def test_health_reports_every_dependency(async_client: AsyncClient) -> None:
    with (
        patch.object(health, "check_database", AsyncMock(return_value=OK)),
        patch.object(health, "check_redis", AsyncMock(return_value=OK)),
        patch.object(health, "check_renderer", AsyncMock(return_value=OK)),
    ):
        response = await async_client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["service"]
    assert payload["status"] == "ok"
    assert payload["datastores"] == {"database": OK, "redis": OK}
    assert payload["dependencies"] == {"renderer": OK}


@pytest.mark.asyncio
async def test_unreachable_renderer_degrades_health(async_client: AsyncClient) -> None:
    down = {"status": "error", "message": "connection refused"}
    with (
        patch.object(health, "check_database", AsyncMock(return_value=OK)),
        patch.object(health, "check_redis", AsyncMock(return_value=OK)),
        patch.object(health, "check_renderer", AsyncMock(return_value=down)),
    ):
        response = await async_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["dependencies"]["renderer"] == down


@pytest.mark.asyncio
async def test_database_probe_uses_a_real_query(session_factory) -> None:
    with patch("src.infrastructure.db.session.get_session_factory", return_value=session_factory):
        assert await health.check_database() == OK
