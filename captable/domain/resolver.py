"""Candidate discovery across direct, subsidiary and shareholder relationships."""
from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from captable.domain.entities import (
    GOVERNANCE_ROLES,
    Company,
    CompanySnapshot,
    HolderRef,
    Person,
    Role,
    ordered_roles,
)


class CandidateSource(str, enum.Enum):
    DIRECT = "direct"
    SUBSIDIARY = "subsidiary"
    SHAREHOLDER = "shareholder"


_SOURCE_PRECEDENCE = {
    CandidateSource.DIRECT: 0,
    CandidateSource.SUBSIDIARY: 1,
    CandidateSource.SHAREHOLDER: 2,
}


class CandidatePurpose(str, enum.Enum):
    REPRESENTATIVE = "representative"
    SHAREHOLDER = "shareholder"


@dataclass(frozen=True, slots=True)
class Candidate:
    holder: HolderRef
    name: str
    roles: frozenset[Role]
    source: CandidateSource
    source_company_id: str | None = None
    source_company_name: str | None = None
    person: Person | None = None

    @property
    def ordered_roles(self) -> list[Role]:
        return ordered_roles(self.roles)


class RelationshipResolver:
    """Builds deduplicated candidate lists for a target company.

    ``direct_persons`` are the persons recorded under the target itself.
    ``subsidiaries`` are snapshots of the companies holding shares in the target;
    their person shareholders are reachable one level down.
    """

    def __init__(
        self,
        target: CompanySnapshot,
        *,
        direct_persons: Iterable[Person] = (),
        subsidiaries: Iterable[CompanySnapshot] = (),
    ) -> None:
        self._target = target
        self._direct_persons = tuple(direct_persons)
        self._subsidiaries = tuple(subsidiaries)

    def person_candidates(self) -> list[Candidate]:
        merged: dict[str, Candidate] = {}
        order: list[str] = []
        for candidate in self._iter_person_sources():
            person_id = candidate.holder.holder_id
            existing = merged.get(person_id)
            if existing is None:
                merged[person_id] = candidate
                order.append(person_id)
                continue
            merged[person_id] = _merge(existing, candidate)
        return [merged[person_id] for person_id in order]

    def representative_candidates(self) -> list[Candidate]:
        """Persons that may still be granted a governance role on the target."""

        candidates: list[Candidate] = []
        for candidate in self.person_candidates():
            entry = self._target.representation_for(candidate.holder)
            roles = candidate.roles | (entry.roles if entry is not None else frozenset())
            if roles & GOVERNANCE_ROLES:
                continue
            candidates.append(replace(candidate, roles=roles))
        return candidates

    def company_candidates(
        self,
        client_companies: Sequence[Company],
        *,
        purpose: CandidatePurpose = CandidatePurpose.REPRESENTATIVE,
    ) -> list[Candidate]:
        """Companies of the client that may be linked to the target.

        Only the client's own company list is considered; shareholders of those
        companies are not expanded.
        """

        target = self._target
        excluded = {target.company_id}
        excluded.update(
            entry.representative.holder_id
            for entry in target.representations
            if not entry.representative.is_person and entry.is_representative
        )
        if purpose is CandidatePurpose.SHAREHOLDER:
            excluded.update(
                holding.holder.holder_id for holding in target.holdings if not holding.holder.is_person
            )

        candidates: list[Candidate] = []
        seen: set[str] = set()
        for company in client_companies:
            if company.id in excluded or company.id in seen:
                continue
            seen.add(company.id)
            ref = company.ref
            roles = frozenset({Role.SHAREHOLDER}) if target.holding_for(ref) is not None else frozenset()
            candidates.append(
                Candidate(
                    holder=ref,
                    name=company.name,
                    roles=roles,
                    source=CandidateSource.DIRECT,
                )
            )
        candidates.sort(key=lambda candidate: candidate.name.casefold())
        return candidates

    def _iter_person_sources(self) -> Iterable[Candidate]:
        target = self._target
        for person in self._direct_persons:
            yield Candidate(
                holder=person.ref,
                name=person.name,
                roles=person.roles,
                source=CandidateSource.DIRECT,
                source_company_id=target.company_id,
                source_company_name=target.company.name,
                person=person,
            )

        for subsidiary in self._subsidiaries:
            if subsidiary.company_id == target.company_id:
                continue
            for holding in subsidiary.holdings:
                if not holding.holder.is_person:
                    continue
                person = subsidiary.persons.get(holding.holder.holder_id)
                yield Candidate(
                    holder=holding.holder,
                    name=subsidiary.display_name(holding.holder),
                    roles=frozenset({Role.SHAREHOLDER}),
                    source=CandidateSource.SUBSIDIARY,
                    source_company_id=subsidiary.company_id,
                    source_company_name=subsidiary.company.name,
                    person=person,
                )

        for holding in target.holdings:
            if not holding.holder.is_person:
                continue
            yield Candidate(
                holder=holding.holder,
                name=target.display_name(holding.holder),
                roles=frozenset({Role.SHAREHOLDER}),
                source=CandidateSource.SHAREHOLDER,
                source_company_id=target.company_id,
                source_company_name=target.company.name,
                person=target.persons.get(holding.holder.holder_id),
            )


def _merge(existing: Candidate, incoming: Candidate) -> Candidate:
    # Display fields stay with the first source seen; attribution follows precedence.
    source = min((existing.source, incoming.source), key=_SOURCE_PRECEDENCE.__getitem__)
    return replace(
        existing,
        source=source,
        roles=existing.roles | incoming.roles,
        person=existing.person or incoming.person,
    )


__all__ = [
    "Candidate",
    "CandidatePurpose",
    "CandidateSource",
    "RelationshipResolver",
]
