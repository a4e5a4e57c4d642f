from fastapi import FastAPI

from . import admin, certificates, certification_levels, health, progress


def register_routes(app: FastAPI) -> None:
    """Attach all API routers to the FastAPI application."""
    app.include_router(health.router)
    app.include_router(progress.router)
    app.include_router(certificates.router)
    app.include_router(certification_levels.router)
    app.include_router(admin.router)
