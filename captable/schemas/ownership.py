"""Schemas for cap table views and mutation requests."""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from captable.domain.aggregation import CompanyLink, CrossCompanyRelationships
from captable.domain.entities import POOLED_CLASSES, HolderRef, HolderType, Role, ShareClass
from captable.domain.mutations import GrantRoles, MutationCommand, RoleGrant, SetShareholdings
from captable.domain.resolver import Candidate, CandidateSource
from captable.domain.store import RepresentativeView, ShareholderView
from captable.domain.ubo import OwnershipRank
from captable.domain.validation import AllocationMode, ProposedAllocation


class HolderRefModel(BaseModel):
    type: HolderType = Field(..., description="Whether the holder is a person or a company")
    id: str = Field(..., min_length=1, max_length=128)

    def to_ref(self) -> HolderRef:
        return HolderRef(holder_type=self.type, holder_id=self.id)

    @classmethod
    def from_ref(cls, ref: HolderRef) -> "HolderRefModel":
        return cls(type=ref.holder_type, id=ref.holder_id)


class AllocationTerms(BaseModel):
    """Proposed shareholding terms.

    Class mode uses ``class_a``/``class_b``/``class_c``; ordinary mode uses
    ``ordinary`` in the pooled ``share_class``; percentage mode is for companies
    without per-class totals.
    """

    mode: AllocationMode = Field(default=AllocationMode.CLASS)
    class_a: int = 0
    class_b: int = 0
    class_c: int = 0
    ordinary: int = 0
    share_class: ShareClass = Field(default=ShareClass.ORDINARY, description="Pooled class for ordinary mode")
    percentage: Decimal | None = None

    @field_validator("share_class")
    @classmethod
    def _pooled_class(cls, value: ShareClass) -> ShareClass:
        if value not in POOLED_CLASSES:
            raise ValueError("share_class must be Ordinary or General")
        return value

    def to_proposal_for(self, holder: HolderRef) -> ProposedAllocation:
        if self.mode is AllocationMode.PERCENTAGE:
            return ProposedAllocation.percentage_mode(holder, self.percentage if self.percentage is not None else 0)
        # Both buckets are carried so the validator can report a holder mixing them.
        shares = {
            ShareClass.A: self.class_a,
            ShareClass.B: self.class_b,
            ShareClass.C: self.class_c,
            self.share_class: self.ordinary,
        }
        return ProposedAllocation(holder=holder, mode=self.mode, shares=shares)


class ShareAllocationRequest(AllocationTerms):
    holder: HolderRefModel

    def to_proposal(self) -> ProposedAllocation:
        return self.to_proposal_for(self.holder.to_ref())


class SetShareholdingsRequest(BaseModel):
    allocations: list[ShareAllocationRequest] = Field(..., min_length=1)


class RoleGrantRequest(BaseModel):
    holder: HolderRefModel
    roles: list[Role] = Field(..., min_length=1)
    source_company_id: str | None = Field(default=None, description="Company the representative comes from")

    def to_grant(self) -> RoleGrant:
        return RoleGrant(
            holder=self.holder.to_ref(),
            roles=frozenset(self.roles),
            source_company_id=self.source_company_id,
        )


class GrantRolesRequest(BaseModel):
    grants: list[RoleGrantRequest] = Field(..., min_length=1)


class SetRolesRequest(BaseModel):
    roles: list[Role] = Field(default_factory=list)


class NewHolderRecordModel(BaseModel):
    """Person or company record created before it is linked to the company."""

    type: HolderType
    name: str = Field(..., min_length=1, max_length=255)
    address: str | None = None
    nationality: str | None = None
    email: str | None = None
    phone_number: str | None = None
    registration_number: str | None = None
    authorized_shares: dict[ShareClass, int] = Field(
        default_factory=dict, description="Per-class totals for a new company"
    )

    @field_validator("authorized_shares")
    @classmethod
    def _positive_totals(cls, value: dict[ShareClass, int]) -> dict[ShareClass, int]:
        if any(shares < 0 for shares in value.values()):
            raise ValueError("authorized share totals cannot be negative")
        return value

    def to_document(self) -> dict[str, Any]:
        if self.type is HolderType.PERSON:
            fields = {
                "name": self.name.strip(),
                "nationality": self.nationality,
                "address": self.address,
                "email": self.email,
                "phoneNumber": self.phone_number,
            }
        else:
            fields = {
                "name": self.name.strip(),
                "registrationNumber": self.registration_number,
                "address": self.address,
            }
            if self.authorized_shares:
                fields["totalShares"] = [
                    {"totalShares": shares, "class": share_class.value, "type": "Ordinary"}
                    for share_class, shares in self.authorized_shares.items()
                ]
        return {key: value for key, value in fields.items() if value is not None}


class CreateHolderRequest(BaseModel):
    """Create a record and link it as shareholder, representative or both."""

    record: NewHolderRecordModel
    allocation: AllocationTerms | None = None
    roles: list[Role] = Field(default_factory=list)
    source_company_id: str | None = None

    @model_validator(mode="after")
    def _links_the_record(self) -> "CreateHolderRequest":
        if self.allocation is None and not self.roles:
            raise ValueError("provide an allocation, roles, or both")
        return self

    def commands_for(self, holder: HolderRef) -> list[MutationCommand]:
        commands: list[MutationCommand] = []
        if self.allocation is not None:
            commands.append(SetShareholdings(proposals=(self.allocation.to_proposal_for(holder),)))
        if self.roles:
            commands.append(
                GrantRoles(
                    grants=(
                        RoleGrant(
                            holder=holder,
                            roles=frozenset(self.roles),
                            source_company_id=self.source_company_id,
                        ),
                    )
                )
            )
        return commands


class ShareholderRead(BaseModel):
    holder: HolderRefModel
    name: str
    shares: dict[str, int]
    total_shares: int
    percentage: Decimal
    roles: list[Role]
    is_ubo: bool

    @classmethod
    def from_view(cls, view: ShareholderView) -> "ShareholderRead":
        return cls(
            holder=HolderRefModel.from_ref(view.holder),
            name=view.name,
            shares={share_class.value: shares for share_class, shares in view.shares.items()},
            total_shares=view.total_shares,
            percentage=view.percentage,
            roles=list(view.roles),
            is_ubo=view.is_ubo,
        )


class RepresentativeRead(BaseModel):
    holder: HolderRefModel
    name: str
    roles: list[Role]
    source_company_id: str | None
    source_company_name: str | None
    holds_shares: bool
    is_ubo: bool

    @classmethod
    def from_view(cls, view: RepresentativeView) -> "RepresentativeRead":
        return cls(
            holder=HolderRefModel.from_ref(view.holder),
            name=view.name,
            roles=list(view.roles),
            source_company_id=view.source_company_id,
            source_company_name=view.source_company_name,
            holds_shares=view.holds_shares,
            is_ubo=view.is_ubo,
        )


class OwnershipRankRead(BaseModel):
    holder: HolderRefModel
    name: str
    percentage: Decimal
    share_class: ShareClass | None

    @classmethod
    def from_rank(cls, rank: OwnershipRank) -> "OwnershipRankRead":
        return cls(
            holder=HolderRefModel.from_ref(rank.holder),
            name=rank.name,
            percentage=rank.percentage,
            share_class=rank.share_class,
        )


class UBORead(BaseModel):
    ubo: OwnershipRankRead | None
    ranking: list[OwnershipRankRead]


class CompanyLinkRead(BaseModel):
    company_id: str
    company_name: str

    @classmethod
    def from_link(cls, link: CompanyLink) -> "CompanyLinkRead":
        return cls(company_id=link.company_id, company_name=link.company_name)


class CandidateRead(BaseModel):
    holder: HolderRefModel
    name: str
    roles: list[Role]
    source: CandidateSource
    source_company_id: str | None = None
    source_company_name: str | None = None
    email: str | None = None
    nationality: str | None = None
    shareholder_in: list[CompanyLinkRead] = Field(default_factory=list)
    representative_in: list[CompanyLinkRead] = Field(default_factory=list)

    @classmethod
    def from_candidate(
        cls, candidate: Candidate, relationships: CrossCompanyRelationships | None = None
    ) -> "CandidateRead":
        person = candidate.person
        return cls(
            holder=HolderRefModel.from_ref(candidate.holder),
            name=candidate.name,
            roles=candidate.ordered_roles,
            source=candidate.source,
            source_company_id=candidate.source_company_id,
            source_company_name=candidate.source_company_name,
            email=person.email if person is not None else None,
            nationality=person.nationality if person is not None else None,
            shareholder_in=[CompanyLinkRead.from_link(link) for link in relationships.shareholder_in]
            if relationships is not None
            else [],
            representative_in=[CompanyLinkRead.from_link(link) for link in relationships.representative_in]
            if relationships is not None
            else [],
        )


class CandidateListRead(BaseModel):
    candidates: list[CandidateRead]
    complete: bool = Field(default=True, description="False when client-wide relationships were unavailable")


class MutationResponse(BaseModel):
    command: str
    version: int
    holders: list[HolderRefModel]
    shareholders: list[ShareholderRead]
    representatives: list[RepresentativeRead]


__all__ = [
    "AllocationTerms",
    "CandidateListRead",
    "CandidateRead",
    "CompanyLinkRead",
    "CreateHolderRequest",
    "GrantRolesRequest",
    "HolderRefModel",
    "MutationResponse",
    "NewHolderRecordModel",
    "OwnershipRankRead",
    "RepresentativeRead",
    "RoleGrantRequest",
    "SetRolesRequest",
    "SetShareholdingsRequest",
    "ShareAllocationRequest",
    "ShareholderRead",
    "UBORead",
]
