"""In-memory ownership graph for a single company."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal

from captable.domain.entities import (
    CompanySnapshot,
    HolderRef,
    Role,
    ShareClass,
    ordered_roles,
)
from captable.domain.ubo import determine_ubo

logger = logging.getLogger(__name__)

_DISPLAY_PRECISION = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class ShareholderView:
    holder: HolderRef
    name: str
    shares: dict[ShareClass, int]
    total_shares: int
    percentage: Decimal
    roles: tuple[Role, ...]
    is_ubo: bool


@dataclass(frozen=True, slots=True)
class RepresentativeView:
    holder: HolderRef
    name: str
    roles: tuple[Role, ...]
    source_company_id: str | None
    source_company_name: str | None
    holds_shares: bool
    is_ubo: bool


class OwnershipGraphStore:
    """Owns the current snapshot of a company and renders its views.

    The snapshot is never patched; ``commit`` swaps in a new one and bumps the
    version. After a failed write-out the store is flagged stale so callers
    re-fetch instead of trusting the cached state.
    """

    def __init__(self, snapshot: CompanySnapshot) -> None:
        self._snapshot = snapshot
        self._stale = False

    @property
    def snapshot(self) -> CompanySnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    @property
    def stale(self) -> bool:
        return self._stale

    def mark_stale(self) -> None:
        self._stale = True

    def commit(self, snapshot: CompanySnapshot) -> CompanySnapshot:
        committed = replace(snapshot, version=self._snapshot.version + 1)
        self._snapshot = committed
        self._stale = False
        logger.debug(
            "ownership snapshot committed",
            extra={"company_id": committed.company_id, "version": committed.version},
        )
        return committed

    def ubo(self) -> HolderRef | None:
        return determine_ubo(self._snapshot)

    def get_shareholders(self) -> list[ShareholderView]:
        snapshot = self._snapshot
        ubo = determine_ubo(snapshot)
        views: list[ShareholderView] = []
        for holding in snapshot.holdings:
            entry = snapshot.representation_for(holding.holder)
            roles = set(entry.roles) if entry is not None else set()
            roles.add(Role.SHAREHOLDER)
            views.append(
                ShareholderView(
                    holder=holding.holder,
                    name=snapshot.display_name(holding.holder),
                    shares=holding.shares_by_class(),
                    total_shares=holding.total_shares,
                    percentage=holding.percentage(snapshot.company).quantize(
                        _DISPLAY_PRECISION, rounding=ROUND_HALF_UP
                    ),
                    roles=tuple(ordered_roles(roles)),
                    is_ubo=holding.holder == ubo,
                )
            )
        views.sort(key=lambda view: (-view.percentage, view.name.casefold()))
        return views

    def get_representatives(self) -> list[RepresentativeView]:
        snapshot = self._snapshot
        ubo = determine_ubo(snapshot)
        views: list[RepresentativeView] = []
        for entry in snapshot.representations:
            if not entry.is_representative:
                continue
            holds_shares = snapshot.holding_for(entry.representative) is not None
            roles = set(entry.governance_roles)
            if holds_shares:
                roles.add(Role.SHAREHOLDER)
            views.append(
                RepresentativeView(
                    holder=entry.representative,
                    name=snapshot.display_name(entry.representative),
                    roles=tuple(ordered_roles(roles)),
                    source_company_id=entry.source_company_id,
                    source_company_name=snapshot.company_name(entry.source_company_id),
                    holds_shares=holds_shares,
                    is_ubo=entry.representative == ubo,
                )
            )
        return views


__all__ = ["OwnershipGraphStore", "RepresentativeView", "ShareholderView"]
