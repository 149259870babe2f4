"""Value objects describing a company's ownership and governance graph."""
from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any


class HolderType(str, enum.Enum):
    PERSON = "person"
    COMPANY = "company"


class Role(str, enum.Enum):
    SHAREHOLDER = "Shareholder"
    DIRECTOR = "Director"
    JUDICIAL_REPRESENTATIVE = "Judicial Representative"
    LEGAL_REPRESENTATIVE = "Legal Representative"
    SECRETARY = "Secretary"


class ShareClass(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    ORDINARY = "Ordinary"
    GENERAL = "General"

    @property
    def label(self) -> str:
        if self in CLASS_MODE_CLASSES:
            return f"Class {self.value}"
        return self.value


class ShareScheme(str, enum.Enum):
    """How a company's authorized totals are stored."""

    CLASS = "class"
    PERCENTAGE = "percentage"


CLASS_MODE_CLASSES: tuple[ShareClass, ...] = (ShareClass.A, ShareClass.B, ShareClass.C)
POOLED_CLASSES: tuple[ShareClass, ...] = (ShareClass.ORDINARY, ShareClass.GENERAL)
ROLE_ORDER: tuple[Role, ...] = tuple(Role)
GOVERNANCE_ROLES: frozenset[Role] = frozenset(ROLE_ORDER) - {Role.SHAREHOLDER}

_SHARE_CLASS_ALIASES = {
    "a": ShareClass.A,
    "class a": ShareClass.A,
    "classa": ShareClass.A,
    "b": ShareClass.B,
    "class b": ShareClass.B,
    "classb": ShareClass.B,
    "c": ShareClass.C,
    "class c": ShareClass.C,
    "classc": ShareClass.C,
    "ordinary": ShareClass.ORDINARY,
    "general": ShareClass.GENERAL,
}


def normalize_id(value: Any) -> str | None:
    """Return the identifier behind a raw id or an embedded ``{"_id": ...}`` document."""

    if isinstance(value, Mapping):
        value = value.get("_id") or value.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_share_class(value: Any, *, default: ShareClass | None = None) -> ShareClass | None:
    if isinstance(value, ShareClass):
        return value
    if value is None or str(value).strip() == "":
        return default
    try:
        return _SHARE_CLASS_ALIASES[str(value).strip().lower()]
    except KeyError as exc:
        raise ValueError(f"Unknown share class '{value}'") from exc


def parse_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    text = str(value).strip()
    for role in Role:
        if role.value.lower() == text.lower():
            return role
    raise ValueError(f"Unknown role '{value}'")


def normalize_roles(values: Iterable[Any] | str | None) -> frozenset[Role]:
    if values is None:
        return frozenset()
    if isinstance(values, (str, Role)):
        values = [values]
    return frozenset(parse_role(value) for value in values if str(value).strip())


def ordered_roles(roles: Iterable[Role]) -> list[Role]:
    present = set(roles)
    return [role for role in ROLE_ORDER if role in present]


@dataclass(frozen=True, slots=True, order=True)
class HolderRef:
    """Stable identity of a person or company taking part in the graph."""

    holder_type: HolderType
    holder_id: str

    @classmethod
    def person(cls, holder_id: Any) -> "HolderRef":
        return cls._build(HolderType.PERSON, holder_id)

    @classmethod
    def company(cls, holder_id: Any) -> "HolderRef":
        return cls._build(HolderType.COMPANY, holder_id)

    @classmethod
    def _build(cls, holder_type: HolderType, raw: Any) -> "HolderRef":
        holder_id = normalize_id(raw)
        if holder_id is None:
            raise ValueError(f"Missing {holder_type.value} identifier")
        return cls(holder_type=holder_type, holder_id=holder_id)

    @property
    def key(self) -> str:
        return f"{self.holder_type.value}:{self.holder_id}"

    @property
    def is_person(self) -> bool:
        return self.holder_type is HolderType.PERSON


@dataclass(frozen=True, slots=True)
class Person:
    id: str
    name: str
    nationality: str | None = None
    address: str | None = None
    email: str | None = None
    phone_number: str | None = None
    roles: frozenset[Role] = frozenset()

    @property
    def ref(self) -> HolderRef:
        return HolderRef.person(self.id)


@dataclass(frozen=True, slots=True)
class ShareAllocation:
    share_class: ShareClass
    shares: int


@dataclass(frozen=True, slots=True)
class Company:
    id: str
    name: str
    registration_number: str | None = None
    address: str | None = None
    authorized_shares: tuple[ShareAllocation, ...] = ()

    @property
    def ref(self) -> HolderRef:
        return HolderRef.company(self.id)

    def authorized(self) -> dict[ShareClass, int]:
        totals: dict[ShareClass, int] = {}
        for allocation in self.authorized_shares:
            if allocation.shares > 0:
                totals[allocation.share_class] = totals.get(allocation.share_class, 0) + allocation.shares
        return totals

    @property
    def total_authorized(self) -> int:
        return sum(self.authorized().values())

    @property
    def scheme(self) -> ShareScheme:
        # Per-class totals, when present, govern the company outright.
        return ShareScheme.CLASS if self.authorized() else ShareScheme.PERCENTAGE


@dataclass(frozen=True, slots=True)
class ShareHolding:
    holder: HolderRef
    company_id: str
    allocations: tuple[ShareAllocation, ...] = ()
    legacy_percentage: Decimal | None = None

    def shares_by_class(self) -> dict[ShareClass, int]:
        shares: dict[ShareClass, int] = {}
        for allocation in self.allocations:
            if allocation.shares:
                shares[allocation.share_class] = shares.get(allocation.share_class, 0) + allocation.shares
        return shares

    @property
    def total_shares(self) -> int:
        return sum(self.shares_by_class().values())

    @property
    def is_empty(self) -> bool:
        return not self.shares_by_class() and not self.legacy_percentage

    def percentage(self, company: Company) -> Decimal:
        """Return the holder's stake in ``company`` as a percentage (0-100)."""

        if company.scheme is ShareScheme.CLASS:
            total = company.total_authorized
            if total <= 0:
                return Decimal("0")
            return Decimal(self.total_shares) * Decimal("100") / Decimal(total)
        return self.legacy_percentage or Decimal("0")


@dataclass(frozen=True, slots=True)
class RepresentationEntry:
    representative: HolderRef
    company_id: str
    roles: frozenset[Role]
    source_company_id: str | None = None

    @property
    def governance_roles(self) -> frozenset[Role]:
        return self.roles & GOVERNANCE_ROLES

    @property
    def is_representative(self) -> bool:
        return bool(self.governance_roles)


@dataclass(frozen=True, slots=True)
class CompanySnapshot:
    """Immutable view of one company's holders and representatives.

    ``persons`` and ``companies`` carry the display records of every holder the
    snapshot references; ``document`` keeps the raw persistence document so a
    full-document write can resend fields the engine does not manage.
    """

    client_id: str
    company: Company
    persons: Mapping[str, Person] = field(default_factory=dict)
    companies: Mapping[str, Company] = field(default_factory=dict)
    holdings: tuple[ShareHolding, ...] = ()
    representations: tuple[RepresentationEntry, ...] = ()
    document: Mapping[str, Any] = field(default_factory=dict)
    version: int = 0

    @property
    def company_id(self) -> str:
        return self.company.id

    def holding_for(self, holder: HolderRef) -> ShareHolding | None:
        return next((item for item in self.holdings if item.holder == holder), None)

    def representation_for(self, holder: HolderRef) -> RepresentationEntry | None:
        return next((item for item in self.representations if item.representative == holder), None)

    def display_name(self, holder: HolderRef) -> str:
        if holder.is_person:
            person = self.persons.get(holder.holder_id)
            return person.name if person is not None else holder.holder_id
        if holder.holder_id == self.company.id:
            return self.company.name
        company = self.companies.get(holder.holder_id)
        return company.name if company is not None else holder.holder_id

    def company_name(self, company_id: str | None) -> str | None:
        if company_id is None:
            return None
        if company_id == self.company.id:
            return self.company.name
        company = self.companies.get(company_id)
        return company.name if company is not None else None

    def with_records(
        self,
        *,
        persons: Iterable[Person] = (),
        companies: Iterable[Company] = (),
    ) -> "CompanySnapshot":
        """Return a snapshot that also knows the given display records."""

        merged_persons = {person.id: person for person in persons}
        merged_persons.update(self.persons)
        merged_companies = {company.id: company for company in companies}
        merged_companies.update(self.companies)
        return replace(self, persons=merged_persons, companies=merged_companies)

    def replace_holding(self, holder: HolderRef, holding: ShareHolding | None) -> "CompanySnapshot":
        """Return a snapshot where ``holder``'s holding is replaced wholesale.

        An empty or ``None`` holding removes the holder's entry.
        """

        keep = holding is not None and not holding.is_empty
        holdings: list[ShareHolding] = []
        replaced = False
        for item in self.holdings:
            if item.holder != holder:
                holdings.append(item)
            elif keep and not replaced:
                holdings.append(holding)  # type: ignore[arg-type]
                replaced = True
        if keep and not replaced:
            holdings.append(holding)  # type: ignore[arg-type]
        return replace(self, holdings=tuple(holdings))

    def replace_representation(
        self, holder: HolderRef, entry: RepresentationEntry | None
    ) -> "CompanySnapshot":
        entries: list[RepresentationEntry] = []
        replaced = False
        for item in self.representations:
            if item.representative != holder:
                entries.append(item)
            elif entry is not None and not replaced:
                entries.append(entry)
                replaced = True
        if entry is not None and not replaced:
            entries.append(entry)
        return replace(self, representations=tuple(entries))


__all__ = [
    "CLASS_MODE_CLASSES",
    "Company",
    "CompanySnapshot",
    "GOVERNANCE_ROLES",
    "HolderRef",
    "HolderType",
    "POOLED_CLASSES",
    "Person",
    "ROLE_ORDER",
    "RepresentationEntry",
    "Role",
    "ShareAllocation",
    "ShareClass",
    "ShareHolding",
    "ShareScheme",
    "normalize_id",
    "normalize_roles",
    "ordered_roles",
    "parse_role",
    "parse_share_class",
]
