"""FastAPI application entrypoint."""
from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.orm import Session

from captable.api.routes import register_routes
from captable.core.config import Settings, get_settings
from captable.core.logging import configure_logging
from captable.obs import (
    AuditMiddleware,
    MutationAuditRecorder,
    PrometheusMiddleware,
    initialise_tracing,
    instrument_fastapi_app,
    metrics_router,
)
from captable.services.ownership import OwnershipService
from captable.services.persistence import PersistenceClient


def create_application(
    settings: Settings | None = None,
    *,
    persistence_client: PersistenceClient | None = None,
    audit_session_factory: Callable[[], Session] | None = None,
) -> FastAPI:
    """Application factory used by ASGI servers and tests.

    ``persistence_client`` and ``audit_session_factory`` default to the
    configured persistence service and audit database.
    """
    configure_logging()
    settings = settings or get_settings()

    if settings.enable_tracing:
        initialise_tracing(service_name=settings.app_name, endpoint=settings.otel_exporter_endpoint)

    client = persistence_client or PersistenceClient(
        settings.persistence_base_url, timeout=settings.persistence_timeout_seconds
    )
    if not settings.enable_audit_log:
        audit_session_factory = None
    elif audit_session_factory is None:
        from captable.db.session import SessionLocal

        audit_session_factory = SessionLocal

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await client.aclose()

    application = FastAPI(
        title=settings.app_name,
        version=settings.version,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        lifespan=lifespan,
    )

    application.add_middleware(AuditMiddleware)
    if settings.enable_metrics:
        application.add_middleware(PrometheusMiddleware)
        application.include_router(metrics_router)
    register_routes(application)

    application.state.audit_session_factory = audit_session_factory
    application.state.ownership_service = OwnershipService(
        client,
        audit=MutationAuditRecorder(audit_session_factory) if settings.enable_audit_log else None,
    )

    if settings.enable_tracing:
        instrument_fastapi_app(application)

    return application


app = create_application()
