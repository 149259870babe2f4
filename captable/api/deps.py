"""Common dependencies for API routes."""
from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from captable.core.security import BearerCredential, actor_from_credential
from captable.services.ownership import OwnershipService

_bearer = HTTPBearer(auto_error=False)


def get_ownership_service(request: Request) -> OwnershipService:
    """Return the service instance bound to the running application."""

    return request.app.state.ownership_service


def get_credential(
    request: Request,
    authorization: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> BearerCredential | None:
    """Forward the caller's bearer token; absence is rejected by the service."""

    if authorization is None or not authorization.credentials:
        return None
    credential = BearerCredential(token=authorization.credentials)
    request.state.actor = actor_from_credential(credential)
    return credential


__all__ = ["get_credential", "get_ownership_service"]
