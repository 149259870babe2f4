from __future__ import annotations

from captable.domain.aggregation import ClientRelationshipIndex, aggregate_cross_company
from captable.domain.entities import (
    Company,
    CompanySnapshot,
    HolderRef,
    Person,
    RepresentationEntry,
    Role,
    ShareAllocation,
    ShareClass,
    ShareHolding,
)
from captable.domain.resolver import CandidatePurpose, CandidateSource, RelationshipResolver

PERSON_A = Person(id="p-a", name="Person A", roles=frozenset({Role.SHAREHOLDER}))
PERSON_B = Person(id="p-b", name="Person B")


def _holding(holder: HolderRef, company_id: str, shares: int = 10) -> ShareHolding:
    return ShareHolding(
        holder=holder, company_id=company_id, allocations=(ShareAllocation(ShareClass.A, shares),)
    )


def _snapshot(company_id: str, name: str, *, holdings=(), representations=(), persons=()) -> CompanySnapshot:
    return CompanySnapshot(
        client_id="client-1",
        company=Company(id=company_id, name=name, authorized_shares=(ShareAllocation(ShareClass.A, 100),)),
        persons={person.id: person for person in persons},
        holdings=tuple(holdings),
        representations=tuple(representations),
    )


def test_person_reachable_directly_and_via_subsidiary_is_listed_once() -> None:
    target = _snapshot(
        "co-x",
        "Company X",
        holdings=[_holding(PERSON_A.ref, "co-x"), _holding(HolderRef.company("co-y"), "co-x")],
        persons=[PERSON_A],
    )
    subsidiary = _snapshot(
        "co-y",
        "Company Y",
        holdings=[_holding(PERSON_A.ref, "co-y"), _holding(PERSON_B.ref, "co-y")],
        persons=[PERSON_A, PERSON_B],
    )
    resolver = RelationshipResolver(target, direct_persons=[PERSON_A], subsidiaries=[subsidiary])

    candidates = resolver.representative_candidates()

    assert [candidate.holder for candidate in candidates] == [PERSON_A.ref, PERSON_B.ref]
    first = candidates[0]
    assert first.source is CandidateSource.DIRECT
    assert first.source_company_name == "Company X"
    assert first.roles == frozenset({Role.SHAREHOLDER})
    assert candidates[1].source is CandidateSource.SUBSIDIARY
    assert candidates[1].source_company_id == "co-y"


def test_duplicate_keeps_first_source_company_name() -> None:
    target = _snapshot("co-x", "Company X", holdings=[_holding(PERSON_B.ref, "co-x")])
    subsidiary = _snapshot("co-y", "Company Y", holdings=[_holding(PERSON_B.ref, "co-y")], persons=[PERSON_B])
    resolver = RelationshipResolver(target, subsidiaries=[subsidiary])

    (candidate,) = resolver.person_candidates()

    assert candidate.source is CandidateSource.SUBSIDIARY
    assert candidate.source_company_name == "Company Y"


def test_existing_governance_role_excludes_candidate() -> None:
    director = Person(id="p-d", name="Director Dee", roles=frozenset({Role.DIRECTOR}))
    target = _snapshot(
        "co-x",
        "Company X",
        representations=[RepresentationEntry(PERSON_B.ref, "co-x", frozenset({Role.SECRETARY}))],
    )
    resolver = RelationshipResolver(target, direct_persons=[PERSON_A, PERSON_B, director])

    assert [candidate.holder for candidate in resolver.representative_candidates()] == [PERSON_A.ref]


def test_company_candidates_are_one_level_and_exclude_target() -> None:
    target = _snapshot(
        "co-x",
        "Company X",
        holdings=[_holding(HolderRef.company("co-y"), "co-x")],
        representations=[
            RepresentationEntry(HolderRef.company("co-r"), "co-x", frozenset({Role.LEGAL_REPRESENTATIVE}))
        ],
    )
    companies = [
        Company(id="co-x", name="Company X"),
        Company(id="co-z", name="zeta"),
        Company(id="co-y", name="Company Y"),
        Company(id="co-r", name="Company R"),
    ]
    resolver = RelationshipResolver(target)

    representative = resolver.company_candidates(companies)
    assert [candidate.holder.holder_id for candidate in representative] == ["co-y", "co-z"]
    assert representative[0].roles == frozenset({Role.SHAREHOLDER})

    shareholder = resolver.company_candidates(companies, purpose=CandidatePurpose.SHAREHOLDER)
    assert [candidate.holder.holder_id for candidate in shareholder] == ["co-z"]


def test_cross_company_index_reports_other_companies_only() -> None:
    snapshots = [
        _snapshot("co-x", "Company X", holdings=[_holding(PERSON_A.ref, "co-x")]),
        _snapshot(
            "co-y",
            "Company Y",
            holdings=[_holding(PERSON_A.ref, "co-y")],
            representations=[RepresentationEntry(PERSON_A.ref, "co-y", frozenset({Role.DIRECTOR}))],
        ),
        _snapshot(
            "co-z",
            "Company Z",
            representations=[RepresentationEntry(PERSON_B.ref, "co-z", frozenset({Role.SHAREHOLDER}))],
        ),
    ]
    index = ClientRelationshipIndex.build("client-1", snapshots)

    result = aggregate_cross_company(index, [PERSON_A.ref, PERSON_B.ref], exclude_company_id="co-x")

    person_a = result[PERSON_A.ref]
    assert [link.company_name for link in person_a.shareholder_in] == ["Company Y"]
    assert [link.company_name for link in person_a.representative_in] == ["Company Y"]
    # A shareholder-only entry is not a representative role.
    assert result[PERSON_B.ref].is_empty
    assert [link.company_id for link in index.companies_referencing(PERSON_B.ref)] == ["co-z"]
    assert not index.has_any_relationship(HolderRef.person("p-nobody"))
