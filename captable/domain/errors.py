"""Exceptions raised by the ownership reconciliation engine and its collaborators."""
from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from captable.domain.entities import HolderRef
    from captable.domain.validation import ValidationReport


class OwnershipError(RuntimeError):
    """Base exception for ownership engine errors."""


class OwnershipValidationError(OwnershipError):
    """Raised when a proposed change breaks an allocation or role invariant."""

    def __init__(self, report: "ValidationReport") -> None:
        self.report = report
        super().__init__("; ".join(issue.message for issue in report.issues) or "Validation failed")

    @property
    def errors(self) -> dict[str, str]:
        return self.report.as_error_map()


class HolderInUseError(OwnershipValidationError):
    """Raised when deleting a person or company that still has relationships."""


class NotAuthenticatedError(OwnershipError):
    """Raised when no bearer credential is available for a call."""


class PersistenceError(OwnershipError):
    """Raised when the persistence service call fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceNotFoundError(PersistenceError):
    """Raised when the persistence service reports a missing record."""


class PersistenceConflictError(PersistenceError):
    """Raised when the persistence service rejects a write as conflicting."""


class PartialBulkFailureError(OwnershipError):
    """Raised when a bulk write stops partway through the batch."""

    def __init__(
        self,
        *,
        succeeded: Sequence["HolderRef"],
        failed: "HolderRef",
        total: int,
        cause: OwnershipError,
    ) -> None:
        self.succeeded = tuple(succeeded)
        self.failed = failed
        self.total = total
        self.cause = cause
        super().__init__(
            f"Stopped after {len(self.succeeded)} of {total} holders; "
            f"write for {failed.key} failed: {cause}"
        )


__all__ = [
    "HolderInUseError",
    "NotAuthenticatedError",
    "OwnershipError",
    "OwnershipValidationError",
    "PartialBulkFailureError",
    "PersistenceConflictError",
    "PersistenceError",
    "PersistenceNotFoundError",
]
