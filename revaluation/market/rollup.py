"""Daily market snapshot builder.

For every tracked market item, look up each of its external-id sources,
keep the freshest usable price and upsert one MarketPriceSnapshot row for
the (item, day) pair.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revaluation.dates import parse_as_of_date, utcnow
from revaluation.database.models import MarketItem, MarketPriceSnapshot
from revaluation.pricing.money import to_cents
from revaluation.pricing.normalizer import Vendor
from revaluation.pricing.resolver import (
    SOURCE_PRIORITY,
    LivePrice,
    LivePriceResolver,
    normalize_game,
)

logger = logging.getLogger("market.rollup")


@dataclass
class RollupResult:
    as_of_date: date
    items_seen: int = 0
    snapshots_written: int = 0
    items_without_price: int = 0


def pick_freshest(candidates: List[LivePrice]) -> Optional[LivePrice]:
    """Most recently updated price wins; ties go to the higher-priority source."""
    if not candidates:
        return None
    by_priority = sorted(candidates, key=lambda p: SOURCE_PRIORITY.get(Vendor(p.source), 99))
    ordered = sorted(by_priority, key=lambda p: p.updated_at or datetime.min, reverse=True)
    return ordered[0]


def market_item_candidates(
    resolver: LivePriceResolver, market_item: MarketItem, as_of: Optional[date] = None
) -> List[LivePrice]:
    """One price per configured external-id source that has a usable row."""
    game = normalize_game(market_item.game)
    candidates = []
    for external in market_item.external_ids:
        try:
            vendor = Vendor(external.source)
        except ValueError:
            logger.debug("Ignoring unknown price source %r for item %s", external.source, market_item.id)
            continue
        price = resolver.lookup(vendor, external.external_id, external.variant_type, game=game, as_of=as_of)
        if price is not None:
            candidates.append(price)
    return candidates


def _sources_used(candidates: List[LivePrice]) -> List[Dict[str, Any]]:
    return [
        {
            "source": p.source,
            "field": p.field,
            "value_cents": to_cents(p.amount),
            "updated_at": p.updated_at.isoformat() if p.updated_at else None,
        }
        for p in candidates
    ]


def upsert_market_snapshot(
    db: Session, market_item_id: str, as_of: date, price: LivePrice, sources_used: List[Dict[str, Any]]
) -> MarketPriceSnapshot:
    now = utcnow()
    row = (
        db.query(MarketPriceSnapshot)
        .filter(
            MarketPriceSnapshot.market_item_id == market_item_id,
            MarketPriceSnapshot.as_of_date == as_of,
        )
        .one_or_none()
    )
    if row is None:
        row = MarketPriceSnapshot(market_item_id=market_item_id, as_of_date=as_of, created_at=now)
        db.add(row)

    row.currency = price.currency
    row.value_cents = to_cents(price.amount)
    row.low_cents = price.low_cents
    row.high_cents = price.high_cents
    if price.confidence is not None:
        row.confidence = price.confidence
    row.sales_count = price.sales_count
    row.source = price.source
    row.price_field = price.field
    row.sources_used = sources_used
    row.updated_at = now
    return row


def build_market_snapshots(
    db: Session,
    as_of_date: Union[str, date, None] = None,
    resolver: Optional[LivePriceResolver] = None,
    game: Optional[str] = None,
) -> RollupResult:
    """Write one snapshot per tracked market item for ``as_of_date``.

    Only vendor rows updated on or before that day are considered, so the job
    can be re-run for past dates. Database errors roll back and propagate.
    """
    as_of = parse_as_of_date(as_of_date)
    resolver = resolver or LivePriceResolver(db)
    result = RollupResult(as_of_date=as_of)

    query = db.query(MarketItem)
    if game:
        game_id = normalize_game(game)
        query = query.filter(MarketItem.game == (game_id.value if game_id else game))

    try:
        for market_item in query.order_by(MarketItem.id).all():
            result.items_seen += 1
            candidates = market_item_candidates(resolver, market_item, as_of)
            best = pick_freshest(candidates)
            if best is None:
                result.items_without_price += 1
                continue

            upsert_market_snapshot(db, market_item.id, as_of, best, _sources_used(candidates))
            result.snapshots_written += 1

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Market rollup for %s failed", as_of)
        raise

    logger.info(
        "Market rollup for %s: %d items, %d snapshots, %d without price",
        as_of, result.items_seen, result.snapshots_written, result.items_without_price,
    )
    return result
