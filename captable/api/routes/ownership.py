"""Cap table endpoints for one company of a client."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from captable.api.deps import get_credential, get_ownership_service
from captable.core.security import BearerCredential
from captable.domain.entities import HolderRef, HolderType, Role
from captable.domain.errors import (
    HolderInUseError,
    NotAuthenticatedError,
    OwnershipError,
    OwnershipValidationError,
    PartialBulkFailureError,
    PersistenceConflictError,
    PersistenceNotFoundError,
)
from captable.domain.mutations import (
    DeleteHolderRecord,
    GrantRoles,
    MutationCommand,
    RemoveRepresentative,
    RemoveShareholding,
    RevokeRole,
    SetRoles,
    SetShareholdings,
)
from captable.domain.resolver import CandidatePurpose
from captable.domain.store import OwnershipGraphStore
from captable.schemas.ownership import (
    CandidateListRead,
    CandidateRead,
    CreateHolderRequest,
    GrantRolesRequest,
    HolderRefModel,
    MutationResponse,
    OwnershipRankRead,
    RepresentativeRead,
    SetRolesRequest,
    SetShareholdingsRequest,
    ShareholderRead,
    UBORead,
)
from captable.services.ownership import MutationResult, NewHolderRecord, OwnershipService

router = APIRouter()


def _http_error(exc: OwnershipError) -> HTTPException:
    if isinstance(exc, OwnershipValidationError):
        code = status.HTTP_409_CONFLICT if isinstance(exc, HolderInUseError) else status.HTTP_422_UNPROCESSABLE_ENTITY
        return HTTPException(status_code=code, detail={"message": str(exc), "errors": exc.errors})
    if isinstance(exc, NotAuthenticatedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, PartialBulkFailureError):
        detail = {
            "message": str(exc),
            "succeeded": [HolderRefModel.from_ref(holder).model_dump(mode="json") for holder in exc.succeeded],
            "failed": HolderRefModel.from_ref(exc.failed).model_dump(mode="json"),
            "total": exc.total,
        }
        if isinstance(exc.cause, NotAuthenticatedError):
            return HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=detail,
                headers={"WWW-Authenticate": "Bearer"},
            )
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    if isinstance(exc, PersistenceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PersistenceConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


async def _mutate(
    service: OwnershipService,
    credential: BearerCredential | None,
    client_id: str,
    company_id: str,
    command: MutationCommand,
) -> MutationResponse:
    try:
        result = await service.execute(credential, client_id, company_id, command)
        store = await service.load(credential, client_id, company_id)
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    return _mutation_response(result, store)


def _mutation_response(result: MutationResult, store: OwnershipGraphStore) -> MutationResponse:
    return MutationResponse(
        command=result.command,
        version=store.version,
        holders=[HolderRefModel.from_ref(holder) for holder in result.holders],
        shareholders=[ShareholderRead.from_view(view) for view in store.get_shareholders()],
        representatives=[RepresentativeRead.from_view(view) for view in store.get_representatives()],
    )


def _holder(holder_type: HolderType, holder_id: str) -> HolderRef:
    return HolderRef(holder_type=holder_type, holder_id=holder_id)


@router.get("/shareholders", response_model=list[ShareholderRead])
async def list_shareholders(
    client_id: str,
    company_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> list[ShareholderRead]:
    try:
        views = await service.shareholders(credential, client_id, company_id)
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    return [ShareholderRead.from_view(view) for view in views]


@router.get("/representatives", response_model=list[RepresentativeRead])
async def list_representatives(
    client_id: str,
    company_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> list[RepresentativeRead]:
    try:
        views = await service.representatives(credential, client_id, company_id)
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    return [RepresentativeRead.from_view(view) for view in views]


@router.get("/ubo", response_model=UBORead)
async def get_ubo(
    client_id: str,
    company_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> UBORead:
    try:
        top, ranking = await service.ubo(credential, client_id, company_id)
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    return UBORead(
        ubo=OwnershipRankRead.from_rank(top) if top is not None else None,
        ranking=[OwnershipRankRead.from_rank(rank) for rank in ranking],
    )


@router.get("/representative-candidates", response_model=CandidateListRead)
async def list_representative_candidates(
    client_id: str,
    company_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> CandidateListRead:
    """Persons eligible for a governance role, with their roles in the client's other companies."""

    try:
        person_listing = await service.representative_candidates(credential, client_id, company_id)
        company_listing = await service.company_candidates(
            credential, client_id, company_id, purpose=CandidatePurpose.REPRESENTATIVE
        )
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    candidates = [
        CandidateRead.from_candidate(candidate, person_listing.relationships.get(candidate.holder))
        for candidate in person_listing.candidates
    ]
    candidates.extend(CandidateRead.from_candidate(candidate) for candidate in company_listing.candidates)
    return CandidateListRead(
        candidates=candidates,
        complete=person_listing.complete and company_listing.complete,
    )


@router.get("/shareholder-company-candidates", response_model=CandidateListRead)
async def list_shareholder_company_candidates(
    client_id: str,
    company_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> CandidateListRead:
    try:
        listing = await service.company_candidates(
            credential, client_id, company_id, purpose=CandidatePurpose.SHAREHOLDER
        )
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    return CandidateListRead(
        candidates=[CandidateRead.from_candidate(candidate) for candidate in listing.candidates],
        complete=listing.complete,
    )


@router.post("/shareholders", response_model=MutationResponse)
async def set_shareholdings(
    client_id: str,
    company_id: str,
    payload: SetShareholdingsRequest,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    command = SetShareholdings(proposals=tuple(item.to_proposal() for item in payload.allocations))
    return await _mutate(service, credential, client_id, company_id, command)


@router.delete("/shareholders/{holder_type}/{holder_id}", response_model=MutationResponse)
async def remove_shareholding(
    client_id: str,
    company_id: str,
    holder_type: HolderType,
    holder_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    command = RemoveShareholding(holder=_holder(holder_type, holder_id))
    return await _mutate(service, credential, client_id, company_id, command)


@router.post("/representatives", response_model=MutationResponse)
async def grant_roles(
    client_id: str,
    company_id: str,
    payload: GrantRolesRequest,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    command = GrantRoles(grants=tuple(item.to_grant() for item in payload.grants))
    return await _mutate(service, credential, client_id, company_id, command)


@router.put("/representatives/{holder_type}/{holder_id}", response_model=MutationResponse)
async def set_roles(
    client_id: str,
    company_id: str,
    holder_type: HolderType,
    holder_id: str,
    payload: SetRolesRequest,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    command = SetRoles(holder=_holder(holder_type, holder_id), roles=frozenset(payload.roles))
    return await _mutate(service, credential, client_id, company_id, command)


@router.delete("/representatives/{holder_type}/{holder_id}/roles/{role}", response_model=MutationResponse)
async def revoke_role(
    client_id: str,
    company_id: str,
    holder_type: HolderType,
    holder_id: str,
    role: Role,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    command = RevokeRole(holder=_holder(holder_type, holder_id), role=role)
    return await _mutate(service, credential, client_id, company_id, command)


@router.delete("/representatives/{holder_type}/{holder_id}", response_model=MutationResponse)
async def remove_representative(
    client_id: str,
    company_id: str,
    holder_type: HolderType,
    holder_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    command = RemoveRepresentative(holder=_holder(holder_type, holder_id))
    return await _mutate(service, credential, client_id, company_id, command)


@router.post("/holders", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def create_holder(
    client_id: str,
    company_id: str,
    payload: CreateHolderRequest,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> MutationResponse:
    """Create a person or company record and link it as shareholder, representative or both."""

    record = NewHolderRecord(holder_type=payload.record.type, document=payload.record.to_document())
    try:
        result = await service.create_and_attach(credential, client_id, company_id, record, payload.commands_for)
        store = await service.load(credential, client_id, company_id)
    except OwnershipError as exc:
        raise _http_error(exc) from exc
    return _mutation_response(result, store)


@router.delete("/records/{holder_type}/{holder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_holder_record(
    client_id: str,
    company_id: str,
    holder_type: HolderType,
    holder_id: str,
    service: OwnershipService = Depends(get_ownership_service),
    credential: BearerCredential | None = Depends(get_credential),
) -> None:
    """Delete a person or company record that no company of the client still references."""

    try:
        await service.execute(
            credential, client_id, company_id, DeleteHolderRecord(holder=_holder(holder_type, holder_id))
        )
    except OwnershipError as exc:
        raise _http_error(exc) from exc


@router.post("/refresh", status_code=status.HTTP_204_NO_CONTENT)
async def refresh(
    client_id: str,
    company_id: str,
    service: OwnershipService = Depends(get_ownership_service),
) -> None:
    service.refresh(client_id, company_id)


__all__ = ["router"]
