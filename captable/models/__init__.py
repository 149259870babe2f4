"""ORM models package."""
from .audit_log import OwnershipAuditLog
from .base import Base, TimestampMixin

__all__ = [
    "Base",
    "OwnershipAuditLog",
    "TimestampMixin",
]
