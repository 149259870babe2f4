from __future__ import annotations

from decimal import Decimal

import pytest

from captable.domain.entities import (
    Company,
    HolderRef,
    ShareAllocation,
    ShareClass,
    ShareHolding,
    ShareScheme,
)
from captable.domain.validation import (
    AllocationMode,
    IssueCode,
    ProposedAllocation,
    ShareAllocationValidator,
)

P1 = HolderRef.person("p1")
P2 = HolderRef.person("p2")
P3 = HolderRef.person("p3")


def _company(*allocations: tuple[ShareClass, int]) -> Company:
    return Company(
        id="co-x",
        name="Company X",
        authorized_shares=tuple(ShareAllocation(share_class, shares) for share_class, shares in allocations),
    )


def _holding(holder: HolderRef, share_class: ShareClass, shares: int) -> ShareHolding:
    return ShareHolding(holder=holder, company_id="co-x", allocations=(ShareAllocation(share_class, shares),))


def test_bulk_batch_rejected_when_cumulative_total_exceeds_class() -> None:
    validator = ShareAllocationValidator(
        _company((ShareClass.A, 1000)), [_holding(P1, ShareClass.A, 400)]
    )

    report = validator.validate(
        [
            ProposedAllocation.class_mode(P2, a=400),
            ProposedAllocation.class_mode(P3, a=300),
        ]
    )

    assert not report.ok
    assert len(report.issues) == 1
    issue = report.issues[0]
    assert issue.code is IssueCode.OVER_ALLOCATION
    assert issue.share_class is ShareClass.A
    assert issue.exceeded_by == 100
    assert issue.remaining == 600
    assert report.as_error_map() == {"class_A": "Exceeds available Class A shares by 100. Available: 600"}


def test_each_proposal_fits_on_its_own() -> None:
    validator = ShareAllocationValidator(
        _company((ShareClass.A, 1000)), [_holding(P1, ShareClass.A, 400)]
    )

    assert validator.validate([ProposedAllocation.class_mode(P2, a=400)]).ok
    assert validator.validate([ProposedAllocation.class_mode(P3, a=300)]).ok


def test_editing_holder_replaces_existing_stake() -> None:
    validator = ShareAllocationValidator(
        _company((ShareClass.A, 1000)), [_holding(P1, ShareClass.A, 400)]
    )

    assert validator.available(excluding={P1}) == {ShareClass.A: 1000}
    assert validator.validate([ProposedAllocation.class_mode(P1, a=1000)]).ok
    assert not validator.validate([ProposedAllocation.class_mode(P1, a=1001)]).ok


def test_zero_is_no_holding_and_negative_is_rejected() -> None:
    validator = ShareAllocationValidator(_company((ShareClass.A, 10)), [])

    assert validator.validate([ProposedAllocation.class_mode(P1, a=0, b=0, c=0)]).ok

    report = validator.validate([ProposedAllocation.class_mode(P1, a=-1)])
    assert report.has_code(IssueCode.INVALID_VALUE)
    assert "holder:person:p1" in report.as_error_map()


def test_class_without_authorized_total_has_nothing_available() -> None:
    validator = ShareAllocationValidator(_company((ShareClass.A, 10)), [])

    report = validator.validate([ProposedAllocation.class_mode(P1, b=1)])

    assert report.as_error_map() == {"class_B": "Exceeds available Class B shares by 1. Available: 0"}


def test_global_total_reported_only_without_class_issues() -> None:
    # Existing data already over-allocates class B.
    validator = ShareAllocationValidator(
        _company((ShareClass.A, 100), (ShareClass.B, 100)),
        [_holding(P1, ShareClass.B, 150)],
    )

    report = validator.validate([ProposedAllocation.class_mode(P2, a=60)])

    assert [issue.key for issue in report.issues] == ["global"]
    assert report.issues[0].exceeded_by == 10


def test_switching_mode_zeroes_the_other_fields() -> None:
    proposal = ProposedAllocation(
        holder=P1,
        mode=AllocationMode.CLASS,
        shares={ShareClass.A: 5, ShareClass.ORDINARY: 7},
    )

    ordinary = proposal.switch_mode(AllocationMode.ORDINARY)
    assert ordinary.nonzero_shares() == {ShareClass.ORDINARY: 7}

    back = ordinary.switch_mode(AllocationMode.CLASS)
    assert back.nonzero_shares() == {}


def test_holder_cannot_straddle_both_modes() -> None:
    validator = ShareAllocationValidator(_company((ShareClass.A, 100), (ShareClass.ORDINARY, 100)), [])
    proposal = ProposedAllocation(
        holder=P1,
        mode=AllocationMode.CLASS,
        shares={ShareClass.A: 5, ShareClass.ORDINARY: 7},
    )

    report = validator.validate([proposal])

    assert report.has_code(IssueCode.MODE_MIXING)


def test_ordinary_mode_pools_into_one_class() -> None:
    validator = ShareAllocationValidator(
        _company((ShareClass.GENERAL, 100)), [_holding(P1, ShareClass.GENERAL, 70)]
    )

    report = validator.validate([ProposedAllocation.ordinary_mode(P2, 40, share_class=ShareClass.GENERAL)])

    assert report.as_error_map() == {"class_General": "Exceeds available General shares by 10. Available: 30"}
    with pytest.raises(ValueError):
        ProposedAllocation.ordinary_mode(P2, 1, share_class=ShareClass.A)


def test_duplicate_holder_in_batch() -> None:
    validator = ShareAllocationValidator(_company((ShareClass.A, 100)), [])

    report = validator.validate(
        [ProposedAllocation.class_mode(P1, a=1), ProposedAllocation.class_mode(P1, a=2)]
    )

    assert report.has_code(IssueCode.DUPLICATE_HOLDER)


def test_percentage_company_caps_total_at_hundred() -> None:
    company = Company(id="co-l", name="Legacy")
    holdings = [ShareHolding(holder=P1, company_id="co-l", legacy_percentage=Decimal("60"))]
    validator = ShareAllocationValidator(company, holdings)

    assert validator.scheme is ShareScheme.PERCENTAGE
    assert validator.validate([ProposedAllocation.percentage_mode(P2, "40")]).ok

    report = validator.validate([ProposedAllocation.percentage_mode(P2, "40.5")])
    assert report.as_error_map() == {"percentage": "Total shares cannot exceed 100%. Maximum available: 40.00%"}


def test_schemes_are_not_mixed_for_one_company() -> None:
    class_company = ShareAllocationValidator(_company((ShareClass.A, 100)), [])
    legacy_company = ShareAllocationValidator(Company(id="co-l", name="Legacy"), [])

    assert class_company.validate([ProposedAllocation.percentage_mode(P1, 10)]).has_code(
        IssueCode.SCHEME_MISMATCH
    )
    assert legacy_company.validate([ProposedAllocation.class_mode(P1, a=10)]).has_code(
        IssueCode.SCHEME_MISMATCH
    )


def test_company_cannot_hold_itself() -> None:
    validator = ShareAllocationValidator(_company((ShareClass.A, 100)), [])

    report = validator.validate([ProposedAllocation.class_mode(HolderRef.company("co-x"), a=1)])

    assert report.has_code(IssueCode.INVALID_VALUE)
