"""Translate persistence-service company documents to and from snapshots.

Holder references arrive either as raw ids or as embedded ``{"_id": ...}``
objects; they are normalised here so the domain only ever sees ``HolderRef``.
Fields the engine does not manage are carried through untouched on write-back.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

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
    normalize_id,
    normalize_roles,
    ordered_roles,
    parse_share_class,
)

logger = logging.getLogger(__name__)

DEFAULT_SHARE_TYPE = "Ordinary"


def _int(value: Any) -> int:
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, TypeError):
        return 0


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def decode_person(document: Mapping[str, Any]) -> Person:
    person_id = normalize_id(document)
    if person_id is None:
        raise ValueError("Person document has no identifier")
    roles = document.get("roles", document.get("role"))
    return Person(
        id=person_id,
        name=_text(document.get("name")) or person_id,
        nationality=_text(document.get("nationality")),
        address=_text(document.get("address")),
        email=_text(document.get("email")),
        phone_number=_text(document.get("phoneNumber")),
        roles=_lenient_roles(roles),
    )


def decode_authorized_shares(value: Any) -> tuple[ShareAllocation, ...]:
    """Per-class totals are stored as a list; a bare number is a legacy company."""

    if not isinstance(value, list):
        return ()
    allocations: list[ShareAllocation] = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        share_class = _lenient_class(item.get("class", item.get("shareClass")), ShareClass.A)
        shares = _int(item.get("totalShares"))
        if share_class is not None and shares > 0:
            allocations.append(ShareAllocation(share_class=share_class, shares=shares))
    return tuple(allocations)


def decode_company(document: Mapping[str, Any]) -> Company:
    company_id = normalize_id(document)
    if company_id is None:
        raise ValueError("Company document has no identifier")
    return Company(
        id=company_id,
        name=_text(document.get("name")) or company_id,
        registration_number=_text(document.get("registrationNumber")),
        address=_text(document.get("address")),
        authorized_shares=decode_authorized_shares(document.get("totalShares")),
    )


def _lenient_class(value: Any, default: ShareClass | None) -> ShareClass | None:
    try:
        return parse_share_class(value, default=default)
    except ValueError:
        logger.warning("ignoring unknown share class", extra={"share_class": str(value)})
        return None


def _lenient_roles(values: Any) -> frozenset[Role]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    roles: set[Role] = set()
    for value in values:
        try:
            roles |= normalize_roles([value])
        except ValueError:
            logger.warning("ignoring unknown role", extra={"role": str(value)})
    return frozenset(roles)


def _decode_shares(item: Mapping[str, Any]) -> tuple[ShareAllocation, ...]:
    data = item.get("sharesData")
    if isinstance(data, Mapping):
        data = [data]
    if not isinstance(data, list):
        return ()
    totals: dict[ShareClass, int] = {}
    for entry in data:
        if not isinstance(entry, Mapping):
            continue
        share_class = _lenient_class(entry.get("shareClass", entry.get("class")), ShareClass.A)
        shares = _int(entry.get("totalShares"))
        if share_class is None or shares <= 0:
            continue
        totals[share_class] = totals.get(share_class, 0) + shares
    return tuple(ShareAllocation(share_class=share_class, shares=shares) for share_class, shares in totals.items())


def _embedded_person(value: Any) -> Person | None:
    if isinstance(value, Mapping) and normalize_id(value) is not None and value.get("name"):
        return decode_person(value)
    return None


def _embedded_company(value: Any) -> Company | None:
    if isinstance(value, Mapping) and normalize_id(value) is not None and value.get("name"):
        return decode_company(value)
    return None


def decode_company_document(
    client_id: str,
    document: Mapping[str, Any],
    *,
    persons: Iterable[Person] = (),
    companies: Iterable[Company] = (),
    version: int = 0,
) -> CompanySnapshot:
    """Build a snapshot from a full company document.

    Duplicate entries for one holder collapse into the first one, so a holder
    never appears twice in holdings or representations.
    """

    company = decode_company(document)
    person_records: dict[str, Person] = {person.id: person for person in persons}
    company_records: dict[str, Company] = {item.id: item for item in companies}

    holdings: list[ShareHolding] = []
    seen_holdings: set[HolderRef] = set()

    def add_holding(holder: HolderRef, item: Mapping[str, Any]) -> None:
        if holder in seen_holdings:
            logger.warning(
                "duplicate shareholding collapsed",
                extra={"company_id": company.id, "holder": holder.key},
            )
            return
        holding = ShareHolding(
            holder=holder,
            company_id=company.id,
            allocations=_decode_shares(item),
            legacy_percentage=_decimal(item.get("sharePercentage")),
        )
        if holding.is_empty:
            return
        seen_holdings.add(holder)
        holdings.append(holding)

    for item in document.get("shareHolders") or []:
        raw = item.get("personId")
        person_id = normalize_id(raw)
        if person_id is None:
            continue
        embedded = _embedded_person(raw)
        if embedded is not None:
            person_records.setdefault(embedded.id, embedded)
        add_holding(HolderRef.person(person_id), item)

    for item in document.get("shareHoldingCompanies") or []:
        raw = item.get("companyId")
        holder_company_id = normalize_id(raw)
        if holder_company_id is None:
            continue
        embedded_company = _embedded_company(raw)
        if embedded_company is not None:
            company_records.setdefault(embedded_company.id, embedded_company)
        add_holding(HolderRef.company(holder_company_id), item)

    representations: list[RepresentationEntry] = []
    seen_entries: set[HolderRef] = set()

    def add_entry(holder: HolderRef, roles: frozenset[Role], source_company_id: str | None) -> None:
        if holder in seen_entries:
            logger.warning(
                "duplicate representation collapsed",
                extra={"company_id": company.id, "holder": holder.key},
            )
            return
        seen_entries.add(holder)
        if source_company_id == company.id:
            source_company_id = None
        representations.append(
            RepresentationEntry(
                representative=holder,
                company_id=company.id,
                roles=roles,
                source_company_id=source_company_id,
            )
        )

    for item in document.get("representationalSchema") or []:
        raw = item.get("personId")
        person_id = normalize_id(raw)
        if person_id is None:
            continue
        embedded = _embedded_person(raw)
        if embedded is not None:
            person_records.setdefault(embedded.id, embedded)
        source = item.get("companyId")
        embedded_source = _embedded_company(source)
        if embedded_source is not None:
            company_records.setdefault(embedded_source.id, embedded_source)
        add_entry(HolderRef.person(person_id), _lenient_roles(item.get("role")), normalize_id(source))

    for item in document.get("representationalCompany") or []:
        raw = item.get("companyId")
        representative_id = normalize_id(raw)
        if representative_id is None:
            continue
        embedded_company = _embedded_company(raw)
        if embedded_company is not None:
            company_records.setdefault(embedded_company.id, embedded_company)
        add_entry(HolderRef.company(representative_id), _lenient_roles(item.get("role")), None)

    return CompanySnapshot(
        client_id=client_id,
        company=company,
        persons=person_records,
        companies=company_records,
        holdings=tuple(holdings),
        representations=tuple(representations),
        document=copy.deepcopy(dict(document)),
        version=version,
    )


def _encode_holding(holding: ShareHolding, id_field: str) -> dict[str, Any]:
    item: dict[str, Any] = {id_field: holding.holder.holder_id}
    shares = holding.shares_by_class()
    if shares:
        item["sharesData"] = [
            {"totalShares": value, "shareClass": share_class.value, "shareType": DEFAULT_SHARE_TYPE}
            for share_class, value in shares.items()
        ]
    if holding.legacy_percentage is not None:
        item["sharePercentage"] = float(holding.legacy_percentage)
    return item


def _encode_entry(entry: RepresentationEntry, id_field: str) -> dict[str, Any]:
    item: dict[str, Any] = {
        id_field: entry.representative.holder_id,
        "role": [role.value for role in ordered_roles(entry.roles)],
    }
    if entry.source_company_id is not None and entry.representative.is_person:
        item["companyId"] = entry.source_company_id
    return item


def encode_company_document(snapshot: CompanySnapshot) -> dict[str, Any]:
    """Return the full document to send on a company update.

    Unmanaged keys from the fetched document are preserved; holder references
    are flattened back to plain ids.
    """

    document = copy.deepcopy(dict(snapshot.document))
    document["shareHolders"] = [
        _encode_holding(holding, "personId") for holding in snapshot.holdings if holding.holder.is_person
    ]
    document["shareHoldingCompanies"] = [
        _encode_holding(holding, "companyId") for holding in snapshot.holdings if not holding.holder.is_person
    ]
    document["representationalSchema"] = [
        _encode_entry(entry, "personId") for entry in snapshot.representations if entry.representative.is_person
    ]
    document["representationalCompany"] = [
        _encode_entry(entry, "companyId")
        for entry in snapshot.representations
        if not entry.representative.is_person
    ]
    return document


__all__ = [
    "DEFAULT_SHARE_TYPE",
    "decode_authorized_shares",
    "decode_company",
    "decode_company_document",
    "decode_person",
    "encode_company_document",
]
