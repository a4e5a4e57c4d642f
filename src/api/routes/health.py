from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx
import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter
from sqlalchemy import text
from src.core.config import get_settings
from src.infrastructure.db.session import session_scope

router = APIRouter(tags=["Observability"])
logger = structlog.get_logger()

PROBE_TIMEOUT_SECONDS = 2.0


def _error(exc: Exception) -> dict:
    return {"status": "error", "message": str(exc)[:100]}


async def check_database() -> dict:
    try:
        async with session_scope() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        return _error(exc)
    return {"status": "ok"}


async def check_redis() -> dict:
    """Check the Redis instance backing the validity worker queues."""
    client = aioredis.from_url(
        get_settings().redis_url, socket_connect_timeout=PROBE_TIMEOUT_SECONDS
    )
    try:
        await client.ping()
    except Exception as exc:
        return _error(exc)
    finally:
        await client.aclose()
    return {"status": "ok"}


async def check_renderer() -> dict:
    """Reachability of the HTML-to-PDF service; any HTTP answer counts as up."""
    try:
        async with httpx.AsyncClient(timeout=PROBE_TIMEOUT_SECONDS) as client:
            response = await client.get(get_settings().pdf_render_url)
    except httpx.HTTPError as exc:
        return _error(exc)
    return {"status": "ok", "http_status": response.status_code}


@router.get("/health", summary="Service health probe")
async def health_check() -> dict:
    """Report the database, the worker Redis and the PDF render service.

    Certificates cannot be issued while the database or renderer is down; the
    validity sweep stops while Redis is down.
    """
    settings = get_settings()
    database, redis_status, renderer = await asyncio.gather(
        check_database(), check_redis(), check_renderer()
    )
    checks = {"database": database, "redis": redis_status, "renderer": renderer}
    failing = sorted(name for name, check in checks.items() if check["status"] != "ok")

    payload = {
        "service": settings.app_name,
        "version": settings.version,
        "status": "degraded" if failing else "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "datastores": {"database": database, "redis": redis_status},
        "dependencies": {"renderer": renderer},
    }
    if failing:
        await logger.awarning("health_probe_degraded", failing=failing)
    else:
        await logger.ainfo("health_probe", status="ok")
    return payload
