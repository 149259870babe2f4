"""Async HTTP client for the company/person persistence service."""
from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

import httpx

from captable.core.security import BearerCredential
from captable.domain.errors import (
    NotAuthenticatedError,
    PersistenceConflictError,
    PersistenceError,
    PersistenceNotFoundError,
)
from captable.obs.metrics import PERSISTENCE_LATENCY_SECONDS
from captable.obs.tracing import outbound_headers

logger = logging.getLogger(__name__)


class PersistenceClient:
    """Thin async wrapper around the persistence service REST API.

    Every call takes the caller's bearer credential; responses are unwrapped
    from the service's ``{"data": ...}`` envelope.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._timeout = timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "PersistenceClient":  # pragma: no cover - convenience
        return self

    async def __aexit__(self, *_args: object) -> None:  # pragma: no cover - convenience
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        credential: BearerCredential | None,
        *,
        operation: str,
        json: Any = None,
    ) -> Any:
        if credential is None or not credential.token:
            raise NotAuthenticatedError("A bearer credential is required")

        start = time.perf_counter()
        outcome = "error"
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                headers=outbound_headers({"Authorization": f"Bearer {credential.token}"}),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "persistence call failed",
                extra={"operation": operation, "path": path, "error": str(exc)},
            )
            raise PersistenceError(f"{operation} failed: {exc}") from exc
        else:
            outcome = str(response.status_code)
        finally:
            PERSISTENCE_LATENCY_SECONDS.labels(operation=operation, outcome=outcome).observe(
                time.perf_counter() - start
            )

        if response.status_code >= 400:
            raise self._error_for(response, operation)
        if response.status_code == 204 or not response.content:
            return None
        payload = response.json()
        if isinstance(payload, Mapping) and "data" in payload:
            return payload["data"]
        return payload

    @staticmethod
    def _error_for(response: httpx.Response, operation: str) -> Exception:
        message = _error_message(response) or f"{operation} failed with status {response.status_code}"
        status = response.status_code
        logger.info(
            "persistence call rejected",
            extra={"operation": operation, "status_code": status, "detail": message},
        )
        if status in (401, 403):
            return NotAuthenticatedError(message)
        if status == 404:
            return PersistenceNotFoundError(message, status_code=status)
        if status == 409:
            return PersistenceConflictError(message, status_code=status)
        return PersistenceError(message, status_code=status)

    async def fetch_companies(self, credential: BearerCredential | None, client_id: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", f"/api/client/{client_id}/company", credential, operation="fetch_companies"
        )
        return list(data or [])

    async def fetch_company(
        self, credential: BearerCredential | None, client_id: str, company_id: str
    ) -> dict[str, Any]:
        data = await self._request(
            "GET", f"/api/client/{client_id}/company/{company_id}", credential, operation="fetch_company"
        )
        if not isinstance(data, Mapping):
            raise PersistenceNotFoundError(f"Company {company_id} not found", status_code=404)
        return dict(data)

    async def create_company(
        self, credential: BearerCredential | None, client_id: str, document: Mapping[str, Any]
    ) -> dict[str, Any]:
        data = await self._request(
            "POST", f"/api/client/{client_id}/company", credential, operation="create_company", json=dict(document)
        )
        return dict(data or {})

    async def update_company(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        document: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Replace the full company document; partial patches are not supported upstream."""

        data = await self._request(
            "PUT",
            f"/api/client/{client_id}/company/{company_id}",
            credential,
            operation="update_company",
            json=dict(document),
        )
        return dict(data or {})

    async def delete_company(self, credential: BearerCredential | None, client_id: str, company_id: str) -> None:
        await self._request(
            "DELETE", f"/api/client/{client_id}/company/{company_id}", credential, operation="delete_company"
        )

    async def fetch_persons(
        self, credential: BearerCredential | None, client_id: str, company_id: str
    ) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", f"/api/client/{client_id}/company/{company_id}/person", credential, operation="fetch_persons"
        )
        return list(data or [])

    async def create_person(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        document: Mapping[str, Any],
    ) -> dict[str, Any]:
        data = await self._request(
            "POST",
            f"/api/client/{client_id}/company/{company_id}/person",
            credential,
            operation="create_person",
            json=dict(document),
        )
        return dict(data or {})

    async def delete_person(
        self, credential: BearerCredential | None, client_id: str, company_id: str, person_id: str
    ) -> None:
        await self._request(
            "DELETE",
            f"/api/client/{client_id}/company/{company_id}/person/{person_id}",
            credential,
            operation="delete_person",
        )


def _error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return response.text or None
    if isinstance(payload, Mapping):
        message = payload.get("message") or payload.get("detail") or payload.get("error")
        return str(message) if message else None
    return None


__all__ = ["PersistenceClient"]
