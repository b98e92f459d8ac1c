"""Movers: market items ranked by price change over a lookback window."""

import csv
import io
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from config.settings import get_settings
from revaluation.dates import parse_as_of_date
from revaluation.database.models import CollectionItem, MarketItem, MarketPriceSnapshot
from revaluation.pricing.resolver import normalize_game

logger = logging.getLogger("market.movers")

SORT_IMPACT = "impact"
SORT_PERCENT = "percent"
SORT_KEYS = (SORT_IMPACT, SORT_PERCENT)

CSV_HEADER = [
    "game",
    "canonical_id",
    "display_name",
    "quantity",
    "from_usd",
    "to_usd",
    "change_pct",
    "delta_each_usd",
    "delta_total_usd",
    "from_date",
    "to_date",
]


@dataclass
class Mover:
    market_item_id: str
    game: str
    canonical_id: str
    display_name: Optional[str] = None
    set_name: Optional[str] = None
    quantity: Optional[int] = None
    from_cents: Optional[int] = None
    to_cents: Optional[int] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    delta_each_cents: Optional[int] = None
    delta_total_cents: Optional[int] = None
    change_pct: Optional[float] = None

    @property
    def has_endpoints(self) -> bool:
        return self.from_cents is not None and self.to_cents is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["from_date"] = self.from_date.isoformat() if self.from_date else None
        data["to_date"] = self.to_date.isoformat() if self.to_date else None
        return data


def compute_change(
    from_cents: Optional[int], to_cents: Optional[int], quantity: Optional[int] = None
) -> Tuple[Optional[int], Optional[int], Optional[float]]:
    """Return ``(delta_each, delta_total, change_pct)`` for two snapshot values.

    ``delta_total`` is only defined for a held quantity; ``change_pct`` is
    ``None`` whenever ``from`` is missing or zero.
    """
    if from_cents is None or to_cents is None:
        return None, None, None
    delta_each = to_cents - from_cents
    delta_total = delta_each * quantity if quantity is not None else None
    change_pct = (delta_each / from_cents) * 100 if from_cents else None
    return delta_each, delta_total, change_pct


def build_mover(
    market_item: MarketItem,
    first: Optional[MarketPriceSnapshot],
    last: Optional[MarketPriceSnapshot],
    quantity: Optional[int] = None,
) -> Mover:
    from_cents = first.value_cents if first is not None else None
    to_cents = last.value_cents if last is not None else None
    delta_each, delta_total, change_pct = compute_change(from_cents, to_cents, quantity)
    return Mover(
        market_item_id=market_item.id,
        game=market_item.game,
        canonical_id=market_item.canonical_id,
        display_name=market_item.display_name,
        set_name=market_item.set_name,
        quantity=quantity,
        from_cents=from_cents,
        to_cents=to_cents,
        from_date=first.as_of_date if first is not None else None,
        to_date=last.as_of_date if last is not None else None,
        delta_each_cents=delta_each,
        delta_total_cents=delta_total,
        change_pct=change_pct,
    )


def rank_movers(movers: List[Mover], sort_by: str = SORT_IMPACT, limit: Optional[int] = None) -> List[Mover]:
    """Sort movers by |$ impact| or |% move|, descending, ties by item id.

    Rows missing either endpoint are dropped from both orderings, and rows
    without a percentage are dropped from the percentage ordering.
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown movers sort {sort_by!r}; expected one of {', '.join(SORT_KEYS)}")

    rows = [m for m in movers if m.has_endpoints]
    if sort_by == SORT_PERCENT:
        rows = [m for m in rows if m.change_pct is not None]
        key = lambda m: (-abs(m.change_pct), m.market_item_id)
    else:
        def key(m):
            impact = m.delta_total_cents if m.delta_total_cents is not None else m.delta_each_cents
            return (-abs(impact), m.market_item_id)

    rows.sort(key=key)
    return rows[:limit] if limit is not None else rows


def clamp_window(days: int, limit: int) -> Tuple[int, int]:
    """Validate and clamp a movers request to the configured maxima."""
    if days is None or int(days) < 1:
        raise ValueError(f"Movers window must be at least 1 day, got {days}")
    if limit is None or int(limit) < 1:
        raise ValueError(f"Movers limit must be at least 1, got {limit}")
    settings = get_settings()
    return min(int(days), settings.MOVERS_MAX_DAYS), min(int(limit), settings.MOVERS_MAX_LIMIT)


def user_holdings(db: Session, user_id: str) -> Dict[Tuple[str, str], int]:
    """Held quantity per (canonical game, card id) for a user."""
    holdings: Dict[Tuple[str, str], int] = defaultdict(int)
    rows = db.query(CollectionItem).filter(CollectionItem.user_id == user_id).all()
    for item in rows:
        game = normalize_game(item.game)
        card_id = (item.card_id or "").strip()
        if game is None or not card_id or not item.quantity:
            continue
        holdings[(game.value, card_id)] += item.quantity
    return dict(holdings)


def query_movers(
    db: Session,
    days: int = 7,
    limit: int = 100,
    sort_by: str = SORT_IMPACT,
    as_of_date: Union[str, date, None] = None,
    user_id: Optional[str] = None,
    game: Optional[str] = None,
) -> List[Mover]:
    """Rank market items by how much they moved in the last ``days`` days.

    With ``user_id`` only items the user holds are considered and
    ``delta_total`` is scaled by the held quantity.
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown movers sort {sort_by!r}; expected one of {', '.join(SORT_KEYS)}")
    days, limit = clamp_window(days, limit)
    as_of = parse_as_of_date(as_of_date)
    window_start = as_of - timedelta(days=days)

    items_query = db.query(MarketItem)
    if game:
        game_id = normalize_game(game)
        items_query = items_query.filter(MarketItem.game == (game_id.value if game_id else game))
    market_items = items_query.all()

    holdings = None
    if user_id is not None:
        holdings = user_holdings(db, user_id)
        market_items = [
            mi for mi in market_items if (mi.game, mi.canonical_id) in holdings
        ]
    if not market_items:
        return []

    by_id = {mi.id: mi for mi in market_items}
    snapshots = (
        db.query(MarketPriceSnapshot)
        .filter(
            MarketPriceSnapshot.market_item_id.in_(list(by_id)),
            MarketPriceSnapshot.as_of_date <= as_of,
        )
        .order_by(MarketPriceSnapshot.market_item_id, MarketPriceSnapshot.as_of_date)
        .all()
    )

    # from: last value on or before the window start, else the earliest one after it
    # to: last value on or before as_of
    endpoints: Dict[str, List[MarketPriceSnapshot]] = {}
    for snap in snapshots:
        pair = endpoints.setdefault(snap.market_item_id, [snap, snap])
        if snap.as_of_date <= window_start:
            pair[0] = snap
        pair[1] = snap

    movers = []
    for item_id, (first, last) in endpoints.items():
        market_item = by_id[item_id]
        quantity = holdings.get((market_item.game, market_item.canonical_id)) if holdings is not None else None
        movers.append(build_mover(market_item, first, last, quantity))

    logger.debug("Computed %d movers over %d days ending %s", len(movers), days, as_of)
    return rank_movers(movers, sort_by, limit)


def _usd(cents: Optional[int]) -> str:
    return "" if cents is None else f"{cents / 100:.2f}"


def movers_to_csv(movers: List[Mover]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for m in movers:
        writer.writerow([
            m.game,
            m.canonical_id,
            m.display_name or "",
            "" if m.quantity is None else m.quantity,
            _usd(m.from_cents),
            _usd(m.to_cents),
            "" if m.change_pct is None else f"{m.change_pct:.2f}",
            _usd(m.delta_each_cents),
            _usd(m.delta_total_cents),
            m.from_date.isoformat() if m.from_date else "",
            m.to_date.isoformat() if m.to_date else "",
        ])
    return output.getvalue()
