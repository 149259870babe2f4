"""Health and readiness endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from captable.core.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/healthz", summary="Liveness check")
def health_check() -> dict[str, str]:
    settings = get_settings()
    return {"status": "ok", "service": settings.app_name}


@router.get("/readyz", summary="Readiness check")
def readiness_check(request: Request) -> dict[str, str]:
    """Ready once the audit store answers; without an audit store the service is always ready."""

    settings = get_settings()
    session_factory = getattr(request.app.state, "audit_session_factory", None)
    if session_factory is None:
        return {"status": "ready", "service": settings.app_name, "audit_store": "disabled"}

    session = session_factory()
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("audit store not reachable", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Audit store unavailable"
        ) from exc
    finally:
        session.close()
    return {"status": "ready", "service": settings.app_name, "audit_store": "ok"}
