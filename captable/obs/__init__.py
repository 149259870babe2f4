"""Observability utilities."""

from .audit import AuditLogRecord, AuditMiddleware, MutationAuditRecord, MutationAuditRecorder
from .metrics import (
    MUTATION_COUNTER,
    PERSISTENCE_LATENCY_SECONDS,
    REQUEST_COUNTER,
    REQUEST_DEDUP_COUNTER,
    REQUEST_ERROR_COUNTER,
    REQUEST_LATENCY_SECONDS,
    VALIDATION_ISSUE_COUNTER,
    PrometheusMiddleware,
    metrics_router,
)
from .tracing import (
    initialise_tracing,
    instrument_fastapi_app,
    instrument_sqlalchemy_engine,
    outbound_headers,
    traced,
)

__all__ = [
    "AuditLogRecord",
    "AuditMiddleware",
    "MUTATION_COUNTER",
    "MutationAuditRecord",
    "MutationAuditRecorder",
    "PERSISTENCE_LATENCY_SECONDS",
    "PrometheusMiddleware",
    "REQUEST_COUNTER",
    "REQUEST_DEDUP_COUNTER",
    "REQUEST_ERROR_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "VALIDATION_ISSUE_COUNTER",
    "initialise_tracing",
    "instrument_fastapi_app",
    "instrument_sqlalchemy_engine",
    "metrics_router",
    "outbound_headers",
    "traced",
]
