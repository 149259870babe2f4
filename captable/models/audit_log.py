"""Ownership mutation audit trail."""
from __future__ import annotations

import uuid

from sqlalchemy import Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from captable.models.base import Base, TimestampMixin


class OwnershipAuditLog(TimestampMixin, Base):
    """One applied or rejected mutation against a company's cap table."""

    __tablename__ = "ownership_audit_logs"
    __table_args__ = (
        Index("ix_ownership_audit_logs_client_company", "client_id", "company_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(32))
    resource_id: Mapped[str | None] = mapped_column(String(128))
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON)


__all__ = ["OwnershipAuditLog"]
