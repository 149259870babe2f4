"""Audit logging for requests and ownership mutations."""
from __future__ import annotations

import dataclasses
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from captable.models import OwnershipAuditLog

# Person documents carry contact details; keys are compared lower-cased.
_SENSITIVE_KEYS = frozenset(
    {"email", "phone", "phonenumber", "phone_number", "address", "authorization", "token"}
)


def _mask_sensitive(value: Any) -> str:
    text = str(value)
    return f"***{text[-4:]}" if len(text) > 4 else "***"


def _mask_text(value: str) -> str:
    if "@" in value:
        local, _, domain = value.partition("@")
        if not domain:
            return "***@***"
        return f"{local[:1]}***@{domain}"
    if value.isdigit() and len(value) > 4:
        return _mask_sensitive(value)
    return value


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: _mask_sensitive(item) if str(key).lower() in _SENSITIVE_KEYS and item is not None else _mask(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_mask(item) for item in value]
    if isinstance(value, str):
        return _mask_text(value)
    return value


def _read_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return _mask(json.loads(raw))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return "<binary>"


@dataclass(slots=True)
class AuditLogRecord:
    """One line of the request trail, keyed by the cap table it touched."""

    request_id: str
    method: str
    path: str
    status: int
    duration_ms: float
    client_id: str | None = None
    company_id: str | None = None
    actor: str | None = None
    query: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        payload = dataclasses.asdict(self)
        payload["duration_ms"] = round(self.duration_ms, 2)
        return json.dumps(payload, default=str)


class AuditMiddleware(BaseHTTPMiddleware):
    """Writes a masked trail line for every request and echoes ``X-Request-ID``."""

    def __init__(self, app: ASGIApp, *, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self._logger = logger or logging.getLogger("audit")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = _read_body(await request.body())

        response = await call_next(request)

        # Path parameters are only known once the router has matched.
        params = request.path_params
        record = AuditLogRecord(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=(time.perf_counter() - started) * 1000,
            client_id=params.get("client_id"),
            company_id=params.get("company_id"),
            actor=getattr(request.state, "actor", None),
            query=_mask(dict(request.query_params)),
            body=body,
        )
        self._logger.info(record.to_json())
        response.headers["X-Request-ID"] = request_id
        return response


@dataclass(slots=True)
class MutationAuditRecord:
    client_id: str
    company_id: str
    action: str
    outcome: str
    actor: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def masked_payload(self) -> dict[str, Any]:
        return _mask(json.loads(json.dumps(self.payload, default=str)))

    def to_json(self) -> str:
        return json.dumps(
            {
                "timestamp": self.timestamp,
                "client_id": self.client_id,
                "company_id": self.company_id,
                "actor": self.actor,
                "action": self.action,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "outcome": self.outcome,
                "payload": self.masked_payload(),
            },
            default=str,
        )


class MutationAuditRecorder:
    """Writes mutation audit records to the ``audit`` logger and the audit table.

    A database failure is logged and does not fail the mutation that produced
    the record; the logger line is always emitted first.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._logger = logger or logging.getLogger("audit")

    def record(self, record: MutationAuditRecord) -> None:
        self._logger.info(record.to_json())
        if self._session_factory is None:
            return

        session = self._session_factory()
        try:
            session.add(
                OwnershipAuditLog(
                    client_id=record.client_id,
                    company_id=record.company_id,
                    actor=record.actor,
                    action=record.action,
                    resource_type=record.resource_type,
                    resource_id=record.resource_id,
                    outcome=record.outcome,
                    payload=record.masked_payload(),
                )
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            self._logger.error(
                "failed to persist audit record",
                extra={"error": str(exc), "action": record.action, "company_id": record.company_id},
            )
        finally:
            session.close()


__all__ = ["AuditLogRecord", "AuditMiddleware", "MutationAuditRecord", "MutationAuditRecorder"]
