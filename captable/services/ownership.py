"""Ownership reconciliation service.

Loads company snapshots from the persistence service, runs the pure mutation
core against them and writes accepted changes back one holder at a time.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from captable.core.security import BearerCredential, actor_from_credential, require_credential
from captable.domain.aggregation import (
    ClientRelationshipIndex,
    CrossCompanyRelationships,
    aggregate_cross_company,
)
from captable.domain.entities import CompanySnapshot, HolderRef, HolderType, Person, normalize_id
from captable.domain.errors import (
    HolderInUseError,
    OwnershipError,
    OwnershipValidationError,
    PartialBulkFailureError,
    PersistenceConflictError,
    PersistenceError,
)
from captable.domain.mutations import (
    DeleteHolderRecord,
    GrantRoles,
    MutationCommand,
    MutationOutcome,
    SetRoles,
    SetShareholdings,
    apply_command,
    command_holders,
    command_name,
)
from captable.domain.resolver import Candidate, CandidatePurpose, RelationshipResolver
from captable.domain.store import OwnershipGraphStore, RepresentativeView, ShareholderView
from captable.domain.ubo import OwnershipRank, rank_holders
from captable.domain.validation import IssueCode
from captable.obs.audit import MutationAuditRecord, MutationAuditRecorder
from captable.obs.metrics import MUTATION_COUNTER, VALIDATION_ISSUE_COUNTER
from captable.obs.tracing import traced
from captable.services.documents import decode_company_document, decode_person, encode_company_document
from captable.services.persistence import PersistenceClient
from captable.services.request_cache import RequestContext, RequestDeduplicationCache, RequestKey

logger = logging.getLogger(__name__)

CLIENT_COMPANIES_SCOPE = "client-companies"
_PENDING_HOLDER_ID = "pending-record"


@dataclass(slots=True, frozen=True)
class CandidateListing:
    """Candidates plus their relationships elsewhere in the client.

    ``complete`` is false when the client-wide data was not available for this
    request, in which case ``relationships`` is empty.
    """

    candidates: list[Candidate]
    relationships: dict[HolderRef, CrossCompanyRelationships] = field(default_factory=dict)
    complete: bool = True


@dataclass(slots=True, frozen=True)
class MutationResult:
    command: str
    snapshot: CompanySnapshot
    holders: tuple[HolderRef, ...]


@dataclass(slots=True, frozen=True)
class NewHolderRecord:
    """Person or company document to create before linking it."""

    holder_type: HolderType
    document: Mapping[str, Any]


@dataclass(slots=True)
class _CompanyState:
    store: OwnershipGraphStore
    direct_persons: list[Person]


def _jsonable(value: Any) -> Any:
    if isinstance(value, HolderRef):
        return value.key
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {item.name: _jsonable(getattr(value, item.name)) for item in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(_jsonable(key)): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _command_holder(command: MutationCommand, outcome: MutationOutcome | None = None) -> HolderRef | None:
    holder = getattr(command, "holder", None)
    if holder is not None:
        return holder
    if outcome is not None and len(outcome.holders) == 1:
        return outcome.holders[0]
    return None


class OwnershipService:
    """Per-company ownership graphs backed by the persistence service."""

    def __init__(
        self,
        client: PersistenceClient,
        *,
        cache: RequestDeduplicationCache | None = None,
        audit: MutationAuditRecorder | None = None,
    ) -> None:
        self._client = client
        self._cache = cache or RequestDeduplicationCache()
        self._audit = audit
        self._states: dict[tuple[str, str], _CompanyState] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @property
    def cache(self) -> RequestDeduplicationCache:
        return self._cache

    @staticmethod
    def _require(credential: BearerCredential | None) -> BearerCredential:
        return require_credential(credential.token if credential is not None else None)

    def _lock(self, key: tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def load(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        *,
        refresh: bool = False,
    ) -> OwnershipGraphStore:
        """Return the company's store, fetching it when missing, stale or forced."""

        credential = self._require(credential)
        key = (client_id, company_id)
        state = self._states.get(key)
        if state is not None and not state.store.stale and not refresh:
            return state.store

        document = await self._client.fetch_company(credential, client_id, company_id)
        person_documents = await self._client.fetch_persons(credential, client_id, company_id)
        persons = [decode_person(item) for item in person_documents]
        known_companies = self._cache.peek(RequestKey.of(CLIENT_COMPANIES_SCOPE, client_id)) or []
        snapshot = decode_company_document(
            client_id,
            document,
            persons=persons,
            companies=[item.company for item in known_companies],
        )
        # Another load may have registered the key while this one was fetching.
        state = self._states.get(key)
        if state is None:
            state = _CompanyState(store=OwnershipGraphStore(snapshot), direct_persons=persons)
            self._states[key] = state
        else:
            state.store.commit(snapshot)
            state.direct_persons = persons
        logger.info(
            "company snapshot loaded",
            extra={
                "client_id": client_id,
                "company_id": company_id,
                "version": state.store.version,
                "holders": len(snapshot.holdings),
            },
        )
        return state.store

    async def shareholders(
        self, credential: BearerCredential | None, client_id: str, company_id: str
    ) -> list[ShareholderView]:
        store = await self.load(credential, client_id, company_id)
        return store.get_shareholders()

    async def representatives(
        self, credential: BearerCredential | None, client_id: str, company_id: str
    ) -> list[RepresentativeView]:
        store = await self.load(credential, client_id, company_id)
        return store.get_representatives()

    async def ubo(
        self, credential: BearerCredential | None, client_id: str, company_id: str
    ) -> tuple[OwnershipRank | None, list[OwnershipRank]]:
        store = await self.load(credential, client_id, company_id)
        ranks = rank_holders(store.snapshot)
        return (ranks[0] if ranks else None), ranks

    async def client_snapshots(
        self,
        credential: BearerCredential | None,
        client_id: str,
        *,
        context: RequestContext | None = None,
    ) -> list[CompanySnapshot] | None:
        """Every company of the client, fetched at most once until invalidated.

        Returns ``None`` when an equivalent fetch is already running or the
        result arrived for a request that is no longer active.
        """

        credential = self._require(credential)

        async def loader() -> list[CompanySnapshot]:
            documents = await self._client.fetch_companies(credential, client_id)
            return [decode_company_document(client_id, document) for document in documents]

        return await self._cache.fetch(
            RequestKey.of(CLIENT_COMPANIES_SCOPE, client_id), loader, context=context
        )

    async def _subsidiaries(
        self, credential: BearerCredential, snapshot: CompanySnapshot
    ) -> list[CompanySnapshot]:
        subsidiaries: list[CompanySnapshot] = []
        for holding in snapshot.holdings:
            if holding.holder.is_person or holding.holder.holder_id == snapshot.company_id:
                continue
            try:
                document = await self._client.fetch_company(
                    credential, snapshot.client_id, holding.holder.holder_id
                )
            except PersistenceError as exc:
                # One unreadable subsidiary must not hide the rest of the candidates.
                logger.warning(
                    "skipping unreadable shareholding company",
                    extra={
                        "client_id": snapshot.client_id,
                        "company_id": holding.holder.holder_id,
                        "error": str(exc),
                    },
                )
                continue
            subsidiaries.append(decode_company_document(snapshot.client_id, document))
        return subsidiaries

    async def representative_candidates(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        *,
        context: RequestContext | None = None,
    ) -> CandidateListing:
        credential = self._require(credential)
        store = await self.load(credential, client_id, company_id)
        state = self._states[(client_id, company_id)]
        resolver = RelationshipResolver(
            store.snapshot,
            direct_persons=state.direct_persons,
            subsidiaries=await self._subsidiaries(credential, store.snapshot),
        )
        candidates = resolver.representative_candidates()

        snapshots = await self.client_snapshots(credential, client_id, context=context)
        if snapshots is None:
            return CandidateListing(candidates=candidates, complete=False)
        index = ClientRelationshipIndex.build(client_id, snapshots)
        relationships = aggregate_cross_company(
            index,
            [candidate.holder for candidate in candidates],
            exclude_company_id=company_id,
        )
        return CandidateListing(candidates=candidates, relationships=relationships)

    async def company_candidates(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        *,
        purpose: CandidatePurpose = CandidatePurpose.REPRESENTATIVE,
        context: RequestContext | None = None,
    ) -> CandidateListing:
        credential = self._require(credential)
        store = await self.load(credential, client_id, company_id)
        snapshots = await self.client_snapshots(credential, client_id, context=context)
        if snapshots is None:
            return CandidateListing(candidates=[], complete=False)
        resolver = RelationshipResolver(store.snapshot)
        candidates = resolver.company_candidates([item.company for item in snapshots], purpose=purpose)
        return CandidateListing(candidates=candidates)

    def refresh(self, client_id: str, company_id: str) -> None:
        """Forget the cached snapshot and every client-wide fetch for ``client_id``."""

        self._states.pop((client_id, company_id), None)
        self._cache.invalidate_params(client_id)
        logger.info("ownership cache refreshed", extra={"client_id": client_id, "company_id": company_id})

    async def _fresh_index(self, credential: BearerCredential, client_id: str) -> ClientRelationshipIndex:
        key = RequestKey.of(CLIENT_COMPANIES_SCOPE, client_id)
        self._cache.invalidate(key)
        snapshots = await self.client_snapshots(credential, client_id)
        if snapshots is None:
            raise PersistenceConflictError(
                "Client companies changed while checking relationships; retry the deletion",
                status_code=409,
            )
        return ClientRelationshipIndex.build(client_id, snapshots)

    async def _known_holders(
        self,
        credential: BearerCredential,
        state: _CompanyState,
        snapshot: CompanySnapshot,
        command: MutationCommand,
    ) -> frozenset[HolderRef]:
        """Person and company records ``command`` may link to the target.

        Subsidiary persons and the client's company list are only fetched when
        the command names a holder the target does not already know.
        """

        known = {person.ref for person in snapshot.persons.values()}
        known.update(company.ref for company in snapshot.companies.values())
        if not isinstance(command, (SetShareholdings, GrantRoles, SetRoles)):
            return frozenset(known)
        missing = [
            holder
            for holder in command_holders(command)
            if holder not in known
            and snapshot.holding_for(holder) is None
            and snapshot.representation_for(holder) is None
        ]
        if any(holder.is_person for holder in missing):
            resolver = RelationshipResolver(
                snapshot,
                direct_persons=state.direct_persons,
                subsidiaries=await self._subsidiaries(credential, snapshot),
            )
            known.update(candidate.holder for candidate in resolver.person_candidates())
        if any(not holder.is_person for holder in missing):
            snapshots = await self.client_snapshots(credential, snapshot.client_id)
            if snapshots is None:
                raise PersistenceConflictError(
                    "Client companies are being reloaded; retry the change", status_code=409
                )
            known.update(item.company.ref for item in snapshots)
        return frozenset(known)

    async def execute(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        command: MutationCommand,
    ) -> MutationResult:
        """Validate ``command`` and write it back; the store changes only on full success."""

        credential = self._require(credential)
        async with self._lock((client_id, company_id)):
            store = await self.load(credential, client_id, company_id)
            state = self._states[(client_id, company_id)]
            index = None
            if isinstance(command, DeleteHolderRecord):
                index = await self._fresh_index(credential, client_id)

            known_companies = self._cache.peek(RequestKey.of(CLIENT_COMPANIES_SCOPE, client_id)) or []
            snapshot = store.snapshot.with_records(
                persons=state.direct_persons,
                companies=[item.company for item in known_companies],
            )
            known = await self._known_holders(credential, state, snapshot, command)
            outcome = apply_command(snapshot, command, index=index, known=known)
            name = command_name(command)
            if not outcome.ok:
                self._reject(credential, client_id, company_id, command, outcome)

            with traced(
                "ownership.mutation",
                command=name,
                client_id=client_id,
                company_id=company_id,
                holders=len(outcome.steps),
            ):
                if isinstance(command, DeleteHolderRecord):
                    await self._delete_record(credential, client_id, company_id, command.holder)
                    # The target's person list changed; fetch it again on next use.
                    store.mark_stale()
                    committed = store.snapshot
                else:
                    await self._write_steps(credential, store, client_id, company_id, command, outcome)
                    committed = store.commit(outcome.snapshot)

        self._cache.invalidate_params(client_id)
        MUTATION_COUNTER.labels(command=name, outcome="applied").inc()
        self._record(
            credential,
            client_id,
            company_id,
            command,
            outcome="applied",
            holder=_command_holder(command, outcome),
            payload={"command": _jsonable(command), "version": committed.version},
        )
        logger.info(
            "ownership mutation applied",
            extra={
                "client_id": client_id,
                "company_id": company_id,
                "command": name,
                "version": committed.version,
            },
        )
        return MutationResult(command=name, snapshot=committed, holders=outcome.holders)

    async def create_and_attach(
        self,
        credential: BearerCredential | None,
        client_id: str,
        company_id: str,
        record: NewHolderRecord,
        commands_for: Callable[[HolderRef], Sequence[MutationCommand]],
    ) -> MutationResult:
        """Create a person or company record and link it to the target.

        The link commands are validated against a placeholder holder first, so
        nothing is created for a change that would be rejected anyway.
        """

        credential = self._require(credential)
        store = await self.load(credential, client_id, company_id)
        pending = HolderRef(holder_type=record.holder_type, holder_id=_PENDING_HOLDER_ID)
        provisional = list(commands_for(pending))
        if not provisional:
            raise ValueError("A new record must be linked by at least one command")
        snapshot = store.snapshot
        for command in provisional:
            outcome = apply_command(snapshot, command, known=frozenset({pending}))
            if not outcome.ok:
                self._reject(credential, client_id, company_id, command, outcome)
            snapshot = outcome.snapshot

        if record.holder_type is HolderType.PERSON:
            created = await self._client.create_person(credential, client_id, company_id, record.document)
        else:
            created = await self._client.create_company(credential, client_id, record.document)
        holder_id = normalize_id(created)
        if holder_id is None:
            raise PersistenceError(f"create_{record.holder_type.value} returned no record id")
        holder = HolderRef(holder_type=record.holder_type, holder_id=holder_id)
        logger.info(
            "holder record created",
            extra={"client_id": client_id, "company_id": company_id, "holder": holder.key},
        )
        # The new record is only visible after the person list and client companies are reloaded.
        store.mark_stale()
        self._cache.invalidate_params(client_id)

        results = [
            await self.execute(credential, client_id, company_id, command) for command in commands_for(holder)
        ]
        result = results[-1]
        return MutationResult(command=result.command, snapshot=result.snapshot, holders=(holder,))

    def _reject(
        self,
        credential: BearerCredential,
        client_id: str,
        company_id: str,
        command: MutationCommand,
        outcome: MutationOutcome,
    ) -> None:
        name = command_name(command)
        MUTATION_COUNTER.labels(command=name, outcome="rejected").inc()
        for issue in outcome.report.issues:
            VALIDATION_ISSUE_COUNTER.labels(code=issue.code.value).inc()
        errors = outcome.report.as_error_map()
        self._record(
            credential,
            client_id,
            company_id,
            command,
            outcome="rejected",
            holder=_command_holder(command),
            payload={"command": _jsonable(command), "errors": errors},
        )
        logger.info(
            "ownership mutation rejected",
            extra={"client_id": client_id, "company_id": company_id, "command": name, "errors": errors},
        )
        if outcome.report.has_code(IssueCode.IN_USE):
            raise HolderInUseError(outcome.report)
        raise OwnershipValidationError(outcome.report)

    async def _write_steps(
        self,
        credential: BearerCredential,
        store: OwnershipGraphStore,
        client_id: str,
        company_id: str,
        command: MutationCommand,
        outcome: MutationOutcome,
    ) -> None:
        succeeded: list[HolderRef] = []
        total = len(outcome.steps)
        for step in outcome.steps:
            try:
                await self._client.update_company(
                    credential, client_id, company_id, encode_company_document(step.snapshot)
                )
            except OwnershipError as exc:
                store.mark_stale()
                MUTATION_COUNTER.labels(command=command_name(command), outcome="failed").inc()
                self._record(
                    credential,
                    client_id,
                    company_id,
                    command,
                    outcome="failed",
                    holder=step.holder,
                    payload={
                        "command": _jsonable(command),
                        "succeeded": [holder.key for holder in succeeded],
                        "error": str(exc),
                    },
                )
                logger.warning(
                    "ownership write-out stopped",
                    extra={
                        "client_id": client_id,
                        "company_id": company_id,
                        "failed_holder": step.holder.key,
                        "succeeded": len(succeeded),
                        "total": total,
                    },
                )
                if total > 1:
                    raise PartialBulkFailureError(
                        succeeded=succeeded, failed=step.holder, total=total, cause=exc
                    ) from exc
                raise
            succeeded.append(step.holder)

    async def _delete_record(
        self, credential: BearerCredential, client_id: str, company_id: str, holder: HolderRef
    ) -> None:
        if holder.is_person:
            await self._client.delete_person(credential, client_id, company_id, holder.holder_id)
        else:
            await self._client.delete_company(credential, client_id, holder.holder_id)
            self._states.pop((client_id, holder.holder_id), None)

    def _record(
        self,
        credential: BearerCredential,
        client_id: str,
        company_id: str,
        command: MutationCommand,
        *,
        outcome: str,
        holder: HolderRef | None,
        payload: dict[str, Any],
    ) -> None:
        if self._audit is None:
            return
        self._audit.record(
            MutationAuditRecord(
                client_id=client_id,
                company_id=company_id,
                action=command_name(command),
                outcome=outcome,
                actor=actor_from_credential(credential),
                resource_type=holder.holder_type.value if holder is not None else None,
                resource_id=holder.holder_id if holder is not None else None,
                payload=payload,
            )
        )


__all__ = [
    "CLIENT_COMPANIES_SCOPE",
    "CandidateListing",
    "MutationResult",
    "NewHolderRecord",
    "OwnershipService",
]
