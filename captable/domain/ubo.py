"""Ultimate beneficial owner ranking."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from captable.domain.entities import CompanySnapshot, HolderRef, ShareClass, ShareHolding

_PRECISION = Decimal("0.0001")

# Presentation order for equal stakes; ``None`` is a holding with no class recorded.
_CLASS_PRIORITY: dict[ShareClass | None, int] = {
    ShareClass.A: 0,
    None: 1,
    ShareClass.B: 2,
    ShareClass.C: 3,
    ShareClass.GENERAL: 4,
    ShareClass.ORDINARY: 4,
}


@dataclass(frozen=True, slots=True)
class OwnershipRank:
    holder: HolderRef
    name: str
    percentage: Decimal
    share_class: ShareClass | None

    @property
    def sort_key(self) -> tuple:
        return (
            -self.percentage,
            _CLASS_PRIORITY[self.share_class],
            self.name.casefold(),
            self.holder.holder_type.value,
            self.holder.holder_id,
        )


def _primary_class(holding: ShareHolding) -> ShareClass | None:
    """Return the highest-priority class the holding carries shares in."""

    classes = list(holding.shares_by_class())
    if not classes:
        return None
    return min(classes, key=lambda share_class: _CLASS_PRIORITY[share_class])


def rank_holders(snapshot: CompanySnapshot) -> list[OwnershipRank]:
    """Rank every holder with a positive stake, largest owner first."""

    ranks: list[OwnershipRank] = []
    for holding in snapshot.holdings:
        percentage = holding.percentage(snapshot.company).quantize(_PRECISION, rounding=ROUND_HALF_UP)
        if percentage <= 0:
            continue
        ranks.append(
            OwnershipRank(
                holder=holding.holder,
                name=snapshot.display_name(holding.holder),
                percentage=percentage,
                share_class=_primary_class(holding),
            )
        )
    ranks.sort(key=lambda rank: rank.sort_key)
    return ranks


def determine_ubo(snapshot: CompanySnapshot) -> HolderRef | None:
    ranks = rank_holders(snapshot)
    return ranks[0].holder if ranks else None


__all__ = ["OwnershipRank", "determine_ubo", "rank_holders"]
