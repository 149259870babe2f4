"""Pure mutation commands over a company snapshot.

``apply_command`` never performs I/O: it validates the command against the
snapshot and returns either the new snapshot or the validation report. The
service layer owns writing the result back to persistence.
"""
from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import Union

from captable.domain.aggregation import ClientRelationshipIndex
from captable.domain.entities import (
    CompanySnapshot,
    HolderRef,
    RepresentationEntry,
    Role,
)
from captable.domain.validation import (
    AllocationIssue,
    IssueCode,
    ProposedAllocation,
    ShareAllocationValidator,
    ValidationReport,
    holder_key,
)


@dataclass(frozen=True, slots=True)
class SetShareholdings:
    proposals: tuple[ProposedAllocation, ...]


@dataclass(frozen=True, slots=True)
class RemoveShareholding:
    holder: HolderRef


@dataclass(frozen=True, slots=True)
class RoleGrant:
    holder: HolderRef
    roles: frozenset[Role]
    source_company_id: str | None = None


@dataclass(frozen=True, slots=True)
class GrantRoles:
    grants: tuple[RoleGrant, ...]


@dataclass(frozen=True, slots=True)
class SetRoles:
    holder: HolderRef
    roles: frozenset[Role]


@dataclass(frozen=True, slots=True)
class RevokeRole:
    holder: HolderRef
    role: Role


@dataclass(frozen=True, slots=True)
class RemoveRepresentative:
    holder: HolderRef


@dataclass(frozen=True, slots=True)
class DeleteHolderRecord:
    holder: HolderRef


MutationCommand = Union[
    SetShareholdings,
    RemoveShareholding,
    GrantRoles,
    SetRoles,
    RevokeRole,
    RemoveRepresentative,
    DeleteHolderRecord,
]


@dataclass(frozen=True, slots=True)
class MutationStep:
    """One per-holder write; ``snapshot`` is the cumulative state after it."""

    holder: HolderRef
    snapshot: CompanySnapshot


@dataclass(frozen=True, slots=True)
class MutationOutcome:
    command: MutationCommand
    snapshot: CompanySnapshot
    report: ValidationReport
    steps: tuple[MutationStep, ...] = ()

    @property
    def ok(self) -> bool:
        return self.report.ok

    @property
    def holders(self) -> tuple[HolderRef, ...]:
        return tuple(step.holder for step in self.steps)


def command_name(command: MutationCommand) -> str:
    return type(command).__name__


def command_holders(command: MutationCommand) -> tuple[HolderRef, ...]:
    """Holders a command would write, in batch order."""

    if isinstance(command, SetShareholdings):
        return tuple(proposal.holder for proposal in command.proposals)
    if isinstance(command, GrantRoles):
        return tuple(grant.holder for grant in command.grants)
    return (command.holder,)


def _unknown_holders(
    snapshot: CompanySnapshot, command: MutationCommand, known: Collection[HolderRef]
) -> list[AllocationIssue]:
    # Holders already linked to the target stay addressable even without a record.
    issues: list[AllocationIssue] = []
    for holder in command_holders(command):
        if holder in known or snapshot.holding_for(holder) is not None or snapshot.representation_for(holder) is not None:
            continue
        kind = "person" if holder.is_person else "company"
        issues.append(_issue(holder, IssueCode.NOT_FOUND, f"No {kind} record {holder.holder_id} in this client"))
    return issues


def apply_command(
    snapshot: CompanySnapshot,
    command: MutationCommand,
    *,
    index: ClientRelationshipIndex | None = None,
    known: Collection[HolderRef] | None = None,
) -> MutationOutcome:
    """Validate and apply ``command``.

    ``known`` lists the person and company records the command may introduce
    to the target; when omitted, holder existence is not checked.
    """

    if known is not None and isinstance(command, (SetShareholdings, GrantRoles, SetRoles)):
        issues = _unknown_holders(snapshot, command, known)
        if issues:
            return _rejected(snapshot, command, issues)
    if isinstance(command, SetShareholdings):
        return _set_shareholdings(snapshot, command)
    if isinstance(command, RemoveShareholding):
        return _remove_shareholding(snapshot, command)
    if isinstance(command, GrantRoles):
        return _grant_roles(snapshot, command)
    if isinstance(command, SetRoles):
        return _set_roles(snapshot, command)
    if isinstance(command, RevokeRole):
        return _revoke_role(snapshot, command)
    if isinstance(command, RemoveRepresentative):
        return _remove_representative(snapshot, command)
    if isinstance(command, DeleteHolderRecord):
        if index is None:
            raise ValueError("Deleting a holder record requires the client relationship index")
        return _delete_holder_record(snapshot, command, index)
    raise TypeError(f"Unsupported mutation command {command!r}")


def _rejected(snapshot: CompanySnapshot, command: MutationCommand, issues: Iterable[AllocationIssue]) -> MutationOutcome:
    return MutationOutcome(command=command, snapshot=snapshot, report=ValidationReport(issues=tuple(issues)))


def _issue(holder: HolderRef, code: IssueCode, message: str) -> AllocationIssue:
    return AllocationIssue(key=holder_key(holder), code=code, message=message, holder=holder)


def _set_shareholdings(snapshot: CompanySnapshot, command: SetShareholdings) -> MutationOutcome:
    if not command.proposals:
        return MutationOutcome(command=command, snapshot=snapshot, report=ValidationReport())
    validator = ShareAllocationValidator(snapshot.company, snapshot.holdings)
    report = validator.validate(command.proposals)
    if not report.ok:
        return MutationOutcome(command=command, snapshot=snapshot, report=report)

    steps: list[MutationStep] = []
    current = snapshot
    for proposal in command.proposals:
        holding = proposal.to_holding(snapshot.company_id)
        current = current.replace_holding(proposal.holder, holding)
        if holding.is_empty:
            current = _drop_shareholder_role(current, proposal.holder)
        else:
            current = _add_shareholder_role(current, proposal.holder)
        steps.append(MutationStep(holder=proposal.holder, snapshot=current))
    return MutationOutcome(command=command, snapshot=current, report=report, steps=tuple(steps))


def _add_shareholder_role(snapshot: CompanySnapshot, holder: HolderRef) -> CompanySnapshot:
    entry = snapshot.representation_for(holder)
    if entry is None or Role.SHAREHOLDER in entry.roles:
        return snapshot
    return snapshot.replace_representation(
        holder,
        RepresentationEntry(
            representative=holder,
            company_id=entry.company_id,
            roles=_entry_roles(snapshot, holder, entry.governance_roles),
            source_company_id=entry.source_company_id,
        ),
    )


def _drop_shareholder_role(snapshot: CompanySnapshot, holder: HolderRef) -> CompanySnapshot:
    entry = snapshot.representation_for(holder)
    if entry is None or Role.SHAREHOLDER not in entry.roles:
        return snapshot
    if not entry.is_representative:
        return snapshot.replace_representation(holder, None)
    return snapshot.replace_representation(
        holder, RepresentationEntry(entry.representative, entry.company_id, entry.governance_roles, entry.source_company_id)
    )


def _remove_shareholding(snapshot: CompanySnapshot, command: RemoveShareholding) -> MutationOutcome:
    if snapshot.holding_for(command.holder) is None:
        return _rejected(
            snapshot,
            command,
            [_issue(command.holder, IssueCode.NOT_FOUND, "Holder has no shareholding in this company")],
        )
    current = snapshot.replace_holding(command.holder, None)
    current = _drop_shareholder_role(current, command.holder)
    return MutationOutcome(
        command=command,
        snapshot=current,
        report=ValidationReport(),
        steps=(MutationStep(holder=command.holder, snapshot=current),),
    )


def _entry_roles(snapshot: CompanySnapshot, holder: HolderRef, governance: Iterable[Role]) -> frozenset[Role]:
    roles = set(governance)
    if snapshot.holding_for(holder) is not None:
        roles.add(Role.SHAREHOLDER)
    return frozenset(roles)


def _grant_roles(snapshot: CompanySnapshot, command: GrantRoles) -> MutationOutcome:
    issues: list[AllocationIssue] = []
    seen: set[HolderRef] = set()
    for grant in command.grants:
        if grant.holder in seen:
            issues.append(_issue(grant.holder, IssueCode.DUPLICATE_HOLDER, "Holder appears more than once in the batch"))
            continue
        seen.add(grant.holder)
        if grant.holder == snapshot.company.ref:
            issues.append(_issue(grant.holder, IssueCode.INVALID_VALUE, "A company cannot represent itself"))
        if not grant.roles - {Role.SHAREHOLDER}:
            issues.append(_issue(grant.holder, IssueCode.MISSING_ROLE, "Select at least one role"))
    if issues:
        return _rejected(snapshot, command, issues)

    steps: list[MutationStep] = []
    current = snapshot
    for grant in command.grants:
        existing = current.representation_for(grant.holder)
        governance = set(grant.roles - {Role.SHAREHOLDER})
        source_company_id = grant.source_company_id
        if existing is not None:
            governance |= existing.governance_roles
            source_company_id = existing.source_company_id or source_company_id
        if source_company_id == snapshot.company_id:
            source_company_id = None
        entry = RepresentationEntry(
            representative=grant.holder,
            company_id=snapshot.company_id,
            roles=_entry_roles(current, grant.holder, governance),
            source_company_id=source_company_id,
        )
        current = current.replace_representation(grant.holder, entry)
        steps.append(MutationStep(holder=grant.holder, snapshot=current))
    return MutationOutcome(command=command, snapshot=current, report=ValidationReport(), steps=tuple(steps))


def _set_roles(snapshot: CompanySnapshot, command: SetRoles) -> MutationOutcome:
    governance = command.roles - {Role.SHAREHOLDER}
    if not governance:
        return _rejected(snapshot, command, [_issue(command.holder, IssueCode.MISSING_ROLE, "Select at least one role")])
    if command.holder == snapshot.company.ref:
        return _rejected(snapshot, command, [_issue(command.holder, IssueCode.INVALID_VALUE, "A company cannot represent itself")])
    existing = snapshot.representation_for(command.holder)
    entry = RepresentationEntry(
        representative=command.holder,
        company_id=snapshot.company_id,
        roles=_entry_roles(snapshot, command.holder, governance),
        source_company_id=existing.source_company_id if existing is not None else None,
    )
    current = snapshot.replace_representation(command.holder, entry)
    return MutationOutcome(
        command=command,
        snapshot=current,
        report=ValidationReport(),
        steps=(MutationStep(holder=command.holder, snapshot=current),),
    )


def _without_governance(snapshot: CompanySnapshot, entry: RepresentationEntry, remaining: frozenset[Role]) -> CompanySnapshot:
    # The entry goes once no governance role is left; the holding and record stay.
    if not remaining:
        return snapshot.replace_representation(entry.representative, None)
    return snapshot.replace_representation(
        entry.representative,
        RepresentationEntry(
            representative=entry.representative,
            company_id=entry.company_id,
            roles=_entry_roles(snapshot, entry.representative, remaining),
            source_company_id=entry.source_company_id,
        ),
    )


def _revoke_role(snapshot: CompanySnapshot, command: RevokeRole) -> MutationOutcome:
    if command.role is Role.SHAREHOLDER:
        return _rejected(
            snapshot,
            command,
            [_issue(command.holder, IssueCode.INVALID_VALUE, "Remove the shareholding to drop the Shareholder role")],
        )
    entry = snapshot.representation_for(command.holder)
    if entry is None or command.role not in entry.roles:
        return _rejected(
            snapshot,
            command,
            [_issue(command.holder, IssueCode.NOT_FOUND, f"Holder does not have the {command.role.value} role")],
        )
    current = _without_governance(snapshot, entry, entry.governance_roles - {command.role})
    return MutationOutcome(
        command=command,
        snapshot=current,
        report=ValidationReport(),
        steps=(MutationStep(holder=command.holder, snapshot=current),),
    )


def _remove_representative(snapshot: CompanySnapshot, command: RemoveRepresentative) -> MutationOutcome:
    entry = snapshot.representation_for(command.holder)
    if entry is None or not entry.is_representative:
        return _rejected(
            snapshot,
            command,
            [_issue(command.holder, IssueCode.NOT_FOUND, "Holder is not a representative of this company")],
        )
    current = _without_governance(snapshot, entry, frozenset())
    return MutationOutcome(
        command=command,
        snapshot=current,
        report=ValidationReport(),
        steps=(MutationStep(holder=command.holder, snapshot=current),),
    )


def _delete_holder_record(
    snapshot: CompanySnapshot, command: DeleteHolderRecord, index: ClientRelationshipIndex
) -> MutationOutcome:
    names = [link.company_name for link in index.companies_referencing(command.holder)]
    in_target = (
        snapshot.holding_for(command.holder) is not None
        or snapshot.representation_for(command.holder) is not None
    )
    if in_target and snapshot.company.name not in names:
        names.append(snapshot.company.name)
    if names:
        return _rejected(
            snapshot,
            command,
            [
                _issue(
                    command.holder,
                    IssueCode.IN_USE,
                    f"Still linked to {', '.join(names)}; remove those relationships first",
                )
            ],
        )
    return MutationOutcome(command=command, snapshot=snapshot, report=ValidationReport())


__all__ = [
    "DeleteHolderRecord",
    "GrantRoles",
    "MutationCommand",
    "MutationOutcome",
    "MutationStep",
    "RemoveRepresentative",
    "RemoveShareholding",
    "RevokeRole",
    "RoleGrant",
    "SetRoles",
    "SetShareholdings",
    "apply_command",
    "command_holders",
    "command_name",
]
