"""Collection Revaluation Engine.

Recomputes one user's portfolio for one UTC day: every collection item is
priced through the live price resolver, per-item valuations are upserted and
a single daily portfolio row is written, all inside one transaction.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revaluation.dates import parse_as_of_date, utcnow
from revaluation.database.models import CollectionItem, DailyPortfolioValuation, ItemValuation
from revaluation.pricing.money import to_cents
from revaluation.pricing.normalizer import normalize_variant_type
from revaluation.pricing.resolver import (
    LivePrice,
    LivePriceResolver,
    is_supported_game,
    normalize_game,
)
from revaluation.valuation.merge import (
    ItemValuationRecord,
    PortfolioRecord,
    PortfolioTotals,
    merge_item_valuation,
    merge_portfolio_valuation,
)

logger = logging.getLogger("valuation.engine")


@dataclass
class RevaluationResult:
    """Outcome of one user's revaluation pass. Always returned, never raised."""

    ok: bool
    as_of_date: date
    user_id: str
    updated_items: int = 0
    skipped_no_price: int = 0
    skipped_unsupported_game: int = 0
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["as_of_date"] = self.as_of_date.isoformat()
        return data


def _item_record(row: ItemValuation) -> ItemValuationRecord:
    return ItemValuationRecord(
        value_cents=row.value_cents,
        currency=row.currency,
        game=row.game,
        confidence=row.confidence,
        meta=row.meta,
    )


def _portfolio_record(row: DailyPortfolioValuation) -> PortfolioRecord:
    return PortfolioRecord(
        total_quantity=row.total_quantity,
        distinct_items=row.distinct_items,
        total_cost_cents=row.total_cost_cents,
        total_value_cents=row.total_value_cents,
        realized_pnl_cents=row.realized_pnl_cents,
        unrealized_pnl_cents=row.unrealized_pnl_cents,
        breakdown=row.breakdown or {},
    )


def upsert_item_valuation(
    db: Session,
    user_id: str,
    item_id: str,
    as_of: date,
    source: str,
    incoming: ItemValuationRecord,
    now: Optional[datetime] = None,
) -> ItemValuation:
    """Insert or merge the valuation keyed by (user, item, date, source)."""
    now = now or utcnow()
    source = source or ""
    row = (
        db.query(ItemValuation)
        .filter(
            ItemValuation.user_id == user_id,
            ItemValuation.item_id == item_id,
            ItemValuation.as_of_date == as_of,
            ItemValuation.source == source,
        )
        .one_or_none()
    )

    merged = merge_item_valuation(_item_record(row) if row else None, incoming)
    if row is None:
        row = ItemValuation(
            user_id=user_id, item_id=item_id, as_of_date=as_of, source=source, created_at=now
        )
        db.add(row)

    row.value_cents = merged.value_cents
    row.currency = merged.currency
    row.game = merged.game
    row.confidence = merged.confidence
    row.meta = merged.meta
    row.updated_at = now
    return row


def upsert_portfolio_valuation(
    db: Session,
    user_id: str,
    as_of: date,
    incoming: PortfolioRecord,
    now: Optional[datetime] = None,
) -> DailyPortfolioValuation:
    """Insert or merge the portfolio row keyed by (user, date)."""
    now = now or utcnow()
    row = db.get(DailyPortfolioValuation, (user_id, as_of))

    merged = merge_portfolio_valuation(_portfolio_record(row) if row else None, incoming)
    if row is None:
        row = DailyPortfolioValuation(user_id=user_id, as_of_date=as_of, created_at=now)
        db.add(row)

    row.total_quantity = merged.total_quantity
    row.distinct_items = merged.distinct_items
    row.total_cost_cents = merged.total_cost_cents
    row.total_value_cents = merged.total_value_cents
    row.realized_pnl_cents = merged.realized_pnl_cents
    row.unrealized_pnl_cents = merged.unrealized_pnl_cents
    row.breakdown = merged.breakdown
    row.updated_at = now
    return row


def _valuation_meta(item: CollectionItem, price: LivePrice, unit_price_cents: int, quantity: int) -> Dict[str, Any]:
    return {
        "unit_price_cents": unit_price_cents,
        "quantity": quantity,
        "card_id": item.card_id,
        "variant_type": normalize_variant_type(item.variant_type),
        "price_field": price.field,
        "price_updated_at": price.updated_at.isoformat() if price.updated_at else None,
    }


def revalue_user_collection(
    db: Session,
    user_id: str,
    as_of_date: Union[str, date, None] = None,
    resolver: Optional[LivePriceResolver] = None,
) -> RevaluationResult:
    """Recompute ``user_id``'s item valuations and daily portfolio row.

    Args:
        db: Database session; the whole pass is committed or rolled back as one
        user_id: Owner of the collection
        as_of_date: UTC calendar date (``date`` or ``YYYY-MM-DD``), default today
        resolver: Price resolver to use, defaults to one bound to ``db``

    Returns:
        A RevaluationResult. Persistence failures roll the pass back and come
        back as ``ok=False`` so a batch driver can move on to the next user.

    Raises:
        ValueError: if ``as_of_date`` is malformed.
    """
    as_of = parse_as_of_date(as_of_date)
    resolver = resolver or LivePriceResolver(db)

    updated = 0
    skipped_no_price = 0
    skipped_unsupported = 0

    try:
        items = (
            db.query(CollectionItem)
            .filter(CollectionItem.user_id == user_id)
            .order_by(CollectionItem.created_at, CollectionItem.id)
            .all()
        )
        if not items:
            db.rollback()
            return RevaluationResult(
                ok=True, as_of_date=as_of, user_id=user_id, message="No collection items for user."
            )

        totals = PortfolioTotals()
        now = utcnow()

        for item in items:
            game = normalize_game(item.game)
            if not is_supported_game(game):
                skipped_unsupported += 1
                continue

            if not item.card_id:
                skipped_no_price += 1
                continue

            quantity = item.quantity if item.quantity is not None else 1
            if quantity < 0:
                raise ValueError(f"Collection item {item.id} has negative quantity {quantity}")

            price = resolver.resolve(game, item.card_id, item.variant_type)
            if price is None:
                skipped_no_price += 1
                continue

            unit_price_cents = to_cents(price.amount)
            total_value_cents = unit_price_cents * quantity

            item.last_value_cents = total_value_cents
            item.updated_at = now

            upsert_item_valuation(
                db,
                user_id=user_id,
                item_id=item.id,
                as_of=as_of,
                source=price.source,
                incoming=ItemValuationRecord(
                    value_cents=total_value_cents,
                    currency=price.currency,
                    game=game.value,
                    confidence=price.confidence,
                    meta=_valuation_meta(item, price, unit_price_cents, quantity),
                ),
                now=now,
            )
            updated += 1

            cost_cents = (item.cost_cents or 0) * quantity
            totals.add(item.id, game, quantity, cost_cents, total_value_cents)

        # Portfolio row goes last so it reflects every item upsert above
        upsert_portfolio_valuation(db, user_id, as_of, totals.to_record(), now=now)
        db.commit()

    except (SQLAlchemyError, ValueError) as e:
        db.rollback()
        logger.error("Revaluation failed for user %s on %s: %s", user_id, as_of, e)
        return RevaluationResult(ok=False, as_of_date=as_of, user_id=user_id, error=str(e))

    logger.info(
        "Revalued user %s for %s: %d updated, %d no price, %d unsupported game",
        user_id, as_of, updated, skipped_no_price, skipped_unsupported,
    )
    return RevaluationResult(
        ok=True,
        as_of_date=as_of,
        user_id=user_id,
        updated_items=updated,
        skipped_no_price=skipped_no_price,
        skipped_unsupported_game=skipped_unsupported,
    )


def revalue_all_users(
    session_factory: Callable[[], Session],
    as_of_date: Union[str, date, None] = None,
    resolver_factory: Optional[Callable[[Session], LivePriceResolver]] = None,
) -> List[RevaluationResult]:
    """Revalue every user that owns collection items, one transaction each.

    A failed user is logged and skipped; the run always continues.
    """
    as_of = parse_as_of_date(as_of_date)

    db = session_factory()
    try:
        user_ids = [
            row[0]
            for row in db.query(CollectionItem.user_id).distinct().order_by(CollectionItem.user_id)
        ]
    finally:
        db.close()

    logger.info("Revaluing %d users for %s", len(user_ids), as_of)
    results = []
    for user_id in user_ids:
        db = session_factory()
        try:
            resolver = resolver_factory(db) if resolver_factory else None
            result = revalue_user_collection(db, user_id, as_of, resolver=resolver)
        finally:
            db.close()

        if not result.ok:
            logger.error("Skipping user %s after failed revaluation: %s", user_id, result.error)
        results.append(result)

    failed = sum(1 for r in results if not r.ok)
    logger.info("Revaluation run finished: %d ok, %d failed", len(results) - failed, failed)
    return results
