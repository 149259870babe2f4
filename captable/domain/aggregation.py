"""Cross-company relationship index for one client."""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from captable.domain.entities import CompanySnapshot, HolderRef


@dataclass(frozen=True, slots=True)
class CompanyLink:
    company_id: str
    company_name: str


@dataclass(frozen=True, slots=True)
class CrossCompanyRelationships:
    holder: HolderRef
    shareholder_in: tuple[CompanyLink, ...] = ()
    representative_in: tuple[CompanyLink, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.shareholder_in and not self.representative_in


@dataclass(slots=True)
class ClientRelationshipIndex:
    """Shareholder and representative lookups over every company of a client.

    Both maps are filled in a single pass over the snapshots and then inverted
    per holder on demand.
    """

    client_id: str
    names: dict[str, str] = field(default_factory=dict)
    shareholders: dict[str, set[HolderRef]] = field(default_factory=dict)
    representatives: dict[str, set[HolderRef]] = field(default_factory=dict)
    listed: dict[str, set[HolderRef]] = field(default_factory=dict)

    @classmethod
    def build(cls, client_id: str, snapshots: Iterable[CompanySnapshot]) -> "ClientRelationshipIndex":
        index = cls(client_id=client_id)
        shareholders: defaultdict[str, set[HolderRef]] = defaultdict(set)
        representatives: defaultdict[str, set[HolderRef]] = defaultdict(set)
        listed: defaultdict[str, set[HolderRef]] = defaultdict(set)
        for snapshot in snapshots:
            company_id = snapshot.company_id
            index.names[company_id] = snapshot.company.name
            for holding in snapshot.holdings:
                shareholders[company_id].add(holding.holder)
            for entry in snapshot.representations:
                # Every entry counts as a relationship, including pure-shareholder ones.
                listed[company_id].add(entry.representative)
                if entry.is_representative:
                    representatives[company_id].add(entry.representative)
        index.shareholders = dict(shareholders)
        index.representatives = dict(representatives)
        index.listed = dict(listed)
        return index

    def relationships_for(
        self, holder: HolderRef, *, exclude_company_id: str | None = None
    ) -> CrossCompanyRelationships:
        return CrossCompanyRelationships(
            holder=holder,
            shareholder_in=self._links(self.shareholders, holder, exclude_company_id),
            representative_in=self._links(self.representatives, holder, exclude_company_id),
        )

    def companies_referencing(self, holder: HolderRef) -> list[CompanyLink]:
        company_ids = {
            company_id
            for mapping in (self.shareholders, self.representatives, self.listed)
            for company_id, holders in mapping.items()
            if holder in holders
        }
        return sorted(
            (CompanyLink(company_id, self.names.get(company_id, company_id)) for company_id in company_ids),
            key=lambda link: link.company_name.casefold(),
        )

    def has_any_relationship(self, holder: HolderRef) -> bool:
        return bool(self.companies_referencing(holder))

    def _links(
        self,
        mapping: Mapping[str, set[HolderRef]],
        holder: HolderRef,
        exclude_company_id: str | None,
    ) -> tuple[CompanyLink, ...]:
        links = [
            CompanyLink(company_id, self.names.get(company_id, company_id))
            for company_id, holders in mapping.items()
            if company_id != exclude_company_id and holder in holders
        ]
        links.sort(key=lambda link: link.company_name.casefold())
        return tuple(links)


def aggregate_cross_company(
    index: ClientRelationshipIndex,
    holders: Iterable[HolderRef],
    *,
    exclude_company_id: str | None = None,
) -> dict[HolderRef, CrossCompanyRelationships]:
    """Report, per holder, the other companies where it already holds shares or a role."""

    return {
        holder: index.relationships_for(holder, exclude_company_id=exclude_company_id)
        for holder in holders
    }


__all__ = [
    "ClientRelationshipIndex",
    "CompanyLink",
    "CrossCompanyRelationships",
    "aggregate_cross_company",
]
