"""Ownership mutation audit trail."""
from __future__ import annotations

from collections.abc import Iterable

import sqlalchemy as sa
from alembic import op

revision = "20241019_01"
down_revision = None
branch_labels = None
depends_on: Iterable[str] | None = None


def upgrade() -> None:  # noqa: D401
    """Create the audit table written by the mutation recorder."""

    op.create_table(
        "ownership_audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("company_id", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=255)),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("resource_type", sa.String(length=32)),
        sa.Column("resource_id", sa.String(length=128)),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("payload", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_ownership_audit_logs_client_company",
        "ownership_audit_logs",
        ["client_id", "company_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_ownership_audit_logs_client_company", table_name="ownership_audit_logs")
    op.drop_table("ownership_audit_logs")
