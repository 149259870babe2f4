"""Top level API router registration."""
from fastapi import APIRouter, FastAPI

from captable.api.routes import health, ownership


def register_routes(application: FastAPI) -> None:
    """Register all API routers with the FastAPI application."""
    api_router = APIRouter(prefix="/api")

    api_router.include_router(health.router, tags=["health"])
    api_router.include_router(
        ownership.router,
        prefix="/clients/{client_id}/companies/{company_id}",
        tags=["ownership"],
    )

    application.include_router(api_router)


__all__ = ["register_routes"]
