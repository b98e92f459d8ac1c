"""Upsert merge policies and portfolio accumulators.

The storage layer only ever asks "is there a row for this key?" and then
applies one of the merge functions below, so the conflict policy can be tested
without a database.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Set

from revaluation.pricing.resolver import GameId


@dataclass(frozen=True)
class ItemValuationRecord:
    value_cents: int
    currency: str
    game: Optional[str]
    confidence: Optional[str]
    meta: Optional[Dict[str, Any]] = None


def merge_item_valuation(
    existing: Optional[ItemValuationRecord], incoming: ItemValuationRecord
) -> ItemValuationRecord:
    """Value, currency and game always take the incoming values;
    confidence and meta keep the prior value when the incoming one is None."""
    if existing is None:
        return incoming
    return replace(
        incoming,
        confidence=incoming.confidence if incoming.confidence is not None else existing.confidence,
        meta=incoming.meta if incoming.meta is not None else existing.meta,
    )


@dataclass(frozen=True)
class PortfolioRecord:
    total_quantity: int
    distinct_items: int
    total_cost_cents: int
    total_value_cents: int
    realized_pnl_cents: Optional[int]
    unrealized_pnl_cents: Optional[int]
    breakdown: Dict[str, Any]


def merge_portfolio_valuation(
    existing: Optional[PortfolioRecord], incoming: PortfolioRecord
) -> PortfolioRecord:
    """Totals, P&L and breakdown are replaced wholesale; realized P&L is
    only replaced when the incoming run supplies one."""
    if existing is None:
        return incoming
    realized = incoming.realized_pnl_cents
    if realized is None:
        realized = existing.realized_pnl_cents
    return replace(incoming, realized_pnl_cents=realized)


@dataclass
class GameTotals:
    quantity: int = 0
    item_ids: Set[str] = field(default_factory=set)
    cost_cents: int = 0
    value_cents: int = 0

    def to_json(self) -> Dict[str, int]:
        return {
            "totalQuantity": self.quantity,
            "distinctItems": len(self.item_ids),
            "totalCostCents": self.cost_cents,
            "totalValueCents": self.value_cents,
        }


@dataclass
class PortfolioTotals:
    """Running totals for one revaluation pass."""

    quantity: int = 0
    item_ids: Set[str] = field(default_factory=set)
    cost_cents: int = 0
    value_cents: int = 0
    by_game: Dict[GameId, GameTotals] = field(default_factory=dict)

    def add(self, item_id: str, game: GameId, quantity: int, cost_cents: int, value_cents: int) -> None:
        self.quantity += quantity
        self.item_ids.add(item_id)
        self.cost_cents += cost_cents
        self.value_cents += value_cents

        game_totals = self.by_game.setdefault(game, GameTotals())
        game_totals.quantity += quantity
        game_totals.item_ids.add(item_id)
        game_totals.cost_cents += cost_cents
        game_totals.value_cents += value_cents

    @property
    def distinct_items(self) -> int:
        return len(self.item_ids)

    @property
    def unrealized_pnl_cents(self) -> Optional[int]:
        # No valued items means "unknown", not "zero gain"
        if not self.item_ids:
            return None
        return self.value_cents - self.cost_cents

    def breakdown_json(self) -> Dict[str, Any]:
        by_game = {
            game.value: totals.to_json()
            for game, totals in sorted(self.by_game.items(), key=lambda kv: kv[0].value)
        }
        return {"byGame": by_game}

    def to_record(self) -> PortfolioRecord:
        return PortfolioRecord(
            total_quantity=self.quantity,
            distinct_items=self.distinct_items,
            total_cost_cents=self.cost_cents,
            total_value_cents=self.value_cents,
            realized_pnl_cents=None,
            unrealized_pnl_cents=self.unrealized_pnl_cents,
            breakdown=self.breakdown_json(),
        )
