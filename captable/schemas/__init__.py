"""Pydantic schemas package."""

from .ownership import (
    CandidateListRead,
    CandidateRead,
    CompanyLinkRead,
    GrantRolesRequest,
    HolderRefModel,
    MutationResponse,
    OwnershipRankRead,
    RepresentativeRead,
    RoleGrantRequest,
    SetRolesRequest,
    SetShareholdingsRequest,
    ShareAllocationRequest,
    ShareholderRead,
    UBORead,
)

__all__ = [
    "CandidateListRead",
    "CandidateRead",
    "CompanyLinkRead",
    "GrantRolesRequest",
    "HolderRefModel",
    "MutationResponse",
    "OwnershipRankRead",
    "RepresentativeRead",
    "RoleGrantRequest",
    "SetRolesRequest",
    "SetShareholdingsRequest",
    "ShareAllocationRequest",
    "ShareholderRead",
    "UBORead",
]
