from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from src.api.deps import drain_background_tasks
from src.api.routes import register_routes
from src.core.config import Settings, get_settings
from src.core.logging import setup_logging
from src.infrastructure.db.session import dispose_engine
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger()

LOCAL_ENVIRONMENTS = frozenset({"local", "development", "test"})


def _cors_origins(settings: Settings) -> list[str]:
    if settings.environment in LOCAL_ENVIRONMENTS:
        return ["*"]
    return list(settings.cors_origins)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    await logger.ainfo(
        "service_startup",
        environment=settings.environment,
        version=settings.version,
        routes=len(app.routes),
    )
    yield
    # Eligibility scans still in flight need the engine, so they finish first
    await drain_background_tasks()
    await dispose_engine()
    await logger.ainfo("service_shutdown")


def create_app() -> FastAPI:
    """Application factory for the certification API."""
    settings = get_settings()
    setup_logging()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        # Browsers need this to read the download filename
        expose_headers=["Content-Disposition", "X-Request-ID"],
    )
    register_routes(app)

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid4())
        bind_contextvars(request_id=request_id, path=request.url.path, method=request.method)
        try:
            response = await call_next(request)
        finally:
            clear_contextvars()
        response.headers["X-Request-ID"] = request_id
        return response

    return app


app = create_app()
