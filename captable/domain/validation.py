"""Share allocation checks for proposed shareholding changes."""
from __future__ import annotations

import enum
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation

from captable.domain.entities import (
    CLASS_MODE_CLASSES,
    POOLED_CLASSES,
    Company,
    HolderRef,
    ShareAllocation,
    ShareClass,
    ShareHolding,
    ShareScheme,
)

_HUNDRED = Decimal("100")


class AllocationMode(str, enum.Enum):
    CLASS = "class"
    ORDINARY = "ordinary"
    PERCENTAGE = "percentage"


class IssueCode(str, enum.Enum):
    OVER_ALLOCATION = "over_allocation"
    MODE_MIXING = "mode_mixing"
    SCHEME_MISMATCH = "scheme_mismatch"
    INVALID_VALUE = "invalid_value"
    DUPLICATE_HOLDER = "duplicate_holder"
    MISSING_ROLE = "missing_role"
    NOT_FOUND = "not_found"
    IN_USE = "in_use"


@dataclass(frozen=True, slots=True)
class AllocationIssue:
    key: str
    code: IssueCode
    message: str
    share_class: ShareClass | None = None
    holder: HolderRef | None = None
    exceeded_by: Decimal | int | None = None
    remaining: Decimal | int | None = None


@dataclass(frozen=True, slots=True)
class ValidationReport:
    issues: tuple[AllocationIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.issues

    def has_code(self, code: IssueCode) -> bool:
        return any(issue.code is code for issue in self.issues)

    def as_error_map(self) -> dict[str, str]:
        """Group issue messages by field key for inline display."""

        errors: dict[str, str] = {}
        for issue in self.issues:
            if issue.key in errors:
                errors[issue.key] = f"{errors[issue.key]}; {issue.message}"
            else:
                errors[issue.key] = issue.message
        return errors


def holder_key(holder: HolderRef) -> str:
    return f"holder:{holder.key}"


@dataclass(frozen=True, slots=True)
class ProposedAllocation:
    """A holder's intended shareholding in one target company.

    Class mode fills the independent A/B/C buckets, ordinary mode a single pooled
    bucket, percentage mode a flat legacy stake. ``switch_mode`` zeroes the fields
    of the scheme being left so a holder never straddles both.
    """

    holder: HolderRef
    mode: AllocationMode
    shares: Mapping[ShareClass, int] = field(default_factory=dict)
    percentage: Decimal | None = None

    @classmethod
    def class_mode(cls, holder: HolderRef, *, a: int = 0, b: int = 0, c: int = 0) -> "ProposedAllocation":
        return cls(
            holder=holder,
            mode=AllocationMode.CLASS,
            shares={ShareClass.A: a, ShareClass.B: b, ShareClass.C: c},
        )

    @classmethod
    def ordinary_mode(
        cls, holder: HolderRef, shares: int, *, share_class: ShareClass = ShareClass.ORDINARY
    ) -> "ProposedAllocation":
        if share_class not in POOLED_CLASSES:
            raise ValueError(f"{share_class.label} is not a pooled share class")
        return cls(holder=holder, mode=AllocationMode.ORDINARY, shares={share_class: shares})

    @classmethod
    def percentage_mode(cls, holder: HolderRef, percentage: Decimal | int | float | str) -> "ProposedAllocation":
        try:
            value = Decimal(str(percentage))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid percentage '{percentage}'") from exc
        return cls(holder=holder, mode=AllocationMode.PERCENTAGE, percentage=value)

    def switch_mode(self, mode: AllocationMode) -> "ProposedAllocation":
        if mode is AllocationMode.PERCENTAGE or self.mode is AllocationMode.PERCENTAGE:
            raise ValueError("Percentage stakes cannot switch to a share-count mode")
        kept = CLASS_MODE_CLASSES if mode is AllocationMode.CLASS else POOLED_CLASSES
        shares = {share_class: (value if share_class in kept else 0) for share_class, value in self.shares.items()}
        return replace(self, mode=mode, shares=shares)

    def nonzero_shares(self) -> dict[ShareClass, int]:
        return {share_class: value for share_class, value in self.shares.items() if value}

    def to_holding(self, company_id: str) -> ShareHolding:
        if self.mode is AllocationMode.PERCENTAGE:
            return ShareHolding(holder=self.holder, company_id=company_id, legacy_percentage=self.percentage)
        allocations = tuple(
            ShareAllocation(share_class=share_class, shares=value)
            for share_class, value in self.nonzero_shares().items()
        )
        return ShareHolding(holder=self.holder, company_id=company_id, allocations=allocations)


class ShareAllocationValidator:
    """Checks proposals against a company's authorized totals and existing holdings."""

    def __init__(self, company: Company, holdings: Iterable[ShareHolding]) -> None:
        self._company = company
        self._holdings = tuple(holdings)

    @property
    def scheme(self) -> ShareScheme:
        return self._company.scheme

    def allocated(self, *, excluding: Collection[HolderRef] = ()) -> dict[ShareClass, int]:
        allocated: dict[ShareClass, int] = {}
        for holding in self._holdings:
            if holding.holder in excluding:
                continue
            for share_class, shares in holding.shares_by_class().items():
                allocated[share_class] = allocated.get(share_class, 0) + shares
        return allocated

    def available(self, *, excluding: Collection[HolderRef] = ()) -> dict[ShareClass, int]:
        allocated = self.allocated(excluding=excluding)
        return {
            share_class: total - allocated.get(share_class, 0)
            for share_class, total in self._company.authorized().items()
        }

    def allocated_percentage(self, *, excluding: Collection[HolderRef] = ()) -> Decimal:
        return sum(
            (holding.legacy_percentage or Decimal("0") for holding in self._holdings if holding.holder not in excluding),
            Decimal("0"),
        )

    def validate(self, proposals: Sequence[ProposedAllocation]) -> ValidationReport:
        """Validate the cumulative effect of ``proposals``.

        Existing holdings of every proposed holder are excluded, so edits replace
        rather than add to a holder's stake.
        """

        issues = self._holder_issues(proposals)
        if issues:
            return ValidationReport(issues=tuple(issues))

        editing = {proposal.holder for proposal in proposals}
        if self.scheme is ShareScheme.CLASS:
            issues.extend(self._class_issues(proposals, editing))
        else:
            issues.extend(self._percentage_issues(proposals, editing))
        return ValidationReport(issues=tuple(issues))

    def _holder_issues(self, proposals: Sequence[ProposedAllocation]) -> list[AllocationIssue]:
        issues: list[AllocationIssue] = []
        seen: set[HolderRef] = set()
        for proposal in proposals:
            key = holder_key(proposal.holder)
            if proposal.holder in seen:
                issues.append(
                    AllocationIssue(
                        key=key,
                        code=IssueCode.DUPLICATE_HOLDER,
                        message="Holder appears more than once in the batch",
                        holder=proposal.holder,
                    )
                )
                continue
            seen.add(proposal.holder)
            if proposal.holder == self._company.ref:
                issues.append(
                    AllocationIssue(
                        key=key,
                        code=IssueCode.INVALID_VALUE,
                        message="A company cannot hold its own shares",
                        holder=proposal.holder,
                    )
                )
            issues.extend(self._proposal_issues(proposal, key))
        return issues

    def _proposal_issues(self, proposal: ProposedAllocation, key: str) -> list[AllocationIssue]:
        issues: list[AllocationIssue] = []
        if proposal.mode is AllocationMode.PERCENTAGE:
            if self.scheme is ShareScheme.CLASS:
                issues.append(
                    AllocationIssue(
                        key=key,
                        code=IssueCode.SCHEME_MISMATCH,
                        message="Company uses per-class share totals; percentage stakes are not accepted",
                        holder=proposal.holder,
                    )
                )
            percentage = proposal.percentage
            if percentage is None or percentage < 0 or percentage > _HUNDRED:
                issues.append(
                    AllocationIssue(
                        key=key,
                        code=IssueCode.INVALID_VALUE,
                        message="Share percentage must be between 0 and 100",
                        holder=proposal.holder,
                    )
                )
            return issues

        if self.scheme is ShareScheme.PERCENTAGE:
            issues.append(
                AllocationIssue(
                    key=key,
                    code=IssueCode.SCHEME_MISMATCH,
                    message="Company uses percentage stakes; per-class share counts are not accepted",
                    holder=proposal.holder,
                )
            )
        for share_class, value in proposal.shares.items():
            if value < 0:
                issues.append(
                    AllocationIssue(
                        key=key,
                        code=IssueCode.INVALID_VALUE,
                        message=f"{share_class.label} shares must be 0 or greater",
                        share_class=share_class,
                        holder=proposal.holder,
                    )
                )
        foreign = POOLED_CLASSES if proposal.mode is AllocationMode.CLASS else CLASS_MODE_CLASSES
        if any(proposal.shares.get(share_class) for share_class in foreign):
            issues.append(
                AllocationIssue(
                    key=key,
                    code=IssueCode.MODE_MIXING,
                    message="Holder cannot combine class shares with ordinary shares",
                    holder=proposal.holder,
                )
            )
        return issues

    def _class_issues(
        self, proposals: Sequence[ProposedAllocation], editing: Collection[HolderRef]
    ) -> list[AllocationIssue]:
        issues: list[AllocationIssue] = []
        allocated = self.allocated(excluding=editing)
        authorized = self._company.authorized()

        proposed: dict[ShareClass, int] = {}
        for proposal in proposals:
            for share_class, value in proposal.nonzero_shares().items():
                proposed[share_class] = proposed.get(share_class, 0) + value

        for share_class in ShareClass:
            requested = proposed.get(share_class, 0)
            if not requested:
                continue
            available = authorized.get(share_class, 0) - allocated.get(share_class, 0)
            if requested > available:
                exceeded = requested - available
                remaining = max(0, available)
                issues.append(
                    AllocationIssue(
                        key=f"class_{share_class.value}",
                        code=IssueCode.OVER_ALLOCATION,
                        message=(
                            f"Exceeds available {share_class.label} shares by {exceeded:,}. "
                            f"Available: {remaining:,}"
                        ),
                        share_class=share_class,
                        exceeded_by=exceeded,
                        remaining=remaining,
                    )
                )

        if not issues:
            occupied = sum(allocated.values())
            total = sum(authorized.values())
            after = occupied + sum(proposed.values())
            if after > total:
                issues.append(
                    AllocationIssue(
                        key="global",
                        code=IssueCode.OVER_ALLOCATION,
                        message=(
                            f"Total shares exceed available shares by {after - total:,}. "
                            f"Remaining: {max(0, total - occupied):,}"
                        ),
                        exceeded_by=after - total,
                        remaining=max(0, total - occupied),
                    )
                )
        return issues

    def _percentage_issues(
        self, proposals: Sequence[ProposedAllocation], editing: Collection[HolderRef]
    ) -> list[AllocationIssue]:
        current = self.allocated_percentage(excluding=editing)
        requested = sum((proposal.percentage or Decimal("0") for proposal in proposals), Decimal("0"))
        if current + requested <= _HUNDRED:
            return []
        available = max(Decimal("0"), _HUNDRED - current)
        exceeded = current + requested - _HUNDRED
        return [
            AllocationIssue(
                key="percentage",
                code=IssueCode.OVER_ALLOCATION,
                message=f"Total shares cannot exceed 100%. Maximum available: {available:.2f}%",
                exceeded_by=exceeded,
                remaining=available,
            )
        ]


__all__ = [
    "AllocationIssue",
    "AllocationMode",
    "IssueCode",
    "ProposedAllocation",
    "ShareAllocationValidator",
    "ValidationReport",
    "holder_key",
]
