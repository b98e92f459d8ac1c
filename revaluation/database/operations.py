# This file contains the database access layer: connection setup, session handling,
# collection-management helpers and the read queries used by the CLI and API.

from datetime import date
from typing import Dict, Generator, List, Mapping, Optional

import pymysql
import sqlalchemy.exc
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from config.settings import get_settings
from revaluation.dates import utcnow
from revaluation.pricing.normalizer import normalize_variant_type
from .models import (
    Base,
    CollectionItem,
    DailyPortfolioValuation,
    ItemValuation,
    MarketItem,
    MarketItemExternalId,
)

# Get application settings
settings = get_settings()

# Database Connection Setup
# The engine owns the connection pool; nothing connects until first use
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# Session Factory
# Each session is one unit of work: its changes commit or roll back together
SessionLocal = sessionmaker(bind=engine)


def ensure_database_exists():
    """Create the MySQL database if the server reports it missing."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return  # Database exists and connection works
    except sqlalchemy.exc.OperationalError as e:
        if "Unknown database" not in str(e) or engine.dialect.name != "mysql":
            print(f"Database connection error: {e}")
            raise

        url = make_url(settings.DATABASE_URL)
        try:
            create_db_connection = pymysql.connect(
                host=url.host,
                user=url.username,
                password=url.password,
                port=int(url.port or 3306),
            )
            try:
                with create_db_connection.cursor() as cursor:
                    cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{url.database}`")
                print(f"Created database '{url.database}'")
            finally:
                create_db_connection.close()
        except pymysql.Error as db_err:
            print(f"Failed to create database: {db_err}")
            raise


def init_db():
    """Create database tables if they don't exist.

    Production deployments should manage the schema with migrations; this is
    for local development and first-time setup.
    """
    ensure_database_exists()
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator:
    """Create and yield a database session (FastAPI dependency).

    Usage:
        @app.get("/portfolio/{user_id}")
        def read_portfolio(user_id: str, db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        # This ensures the session is closed even if an exception occurs
        db.close()


# ---------------------------------------------------------------------------
# Collection management
# ---------------------------------------------------------------------------


def add_collection_item(
    db: Session,
    user_id: str,
    game: str,
    card_id: Optional[str],
    quantity: int = 1,
    variant_type: Optional[str] = None,
    cost_cents: Optional[int] = None,
    card_name: Optional[str] = None,
    set_name: Optional[str] = None,
) -> CollectionItem:
    """Add copies of a card to a user's collection.

    The (user, game, card id, variant) key is unique, so adding a card the user
    already owns increments its quantity instead of creating a duplicate row.

    Raises:
        ValueError: if ``quantity`` is not positive
    """
    if quantity is None or quantity < 1:
        raise ValueError(f"Quantity to add must be at least 1, got {quantity}")

    game = (game or "").strip().lower()
    variant = normalize_variant_type(variant_type)

    item = (
        db.query(CollectionItem)
        .filter(
            CollectionItem.user_id == user_id,
            CollectionItem.game == game,
            CollectionItem.card_id == card_id,
            CollectionItem.variant_type == variant,
        )
        .one_or_none()
    )

    if item is None:
        item = CollectionItem(
            user_id=user_id,
            game=game,
            card_id=card_id,
            variant_type=variant,
            quantity=quantity,
            cost_cents=cost_cents,
            card_name=card_name,
            set_name=set_name,
        )
        db.add(item)
    else:
        item.quantity = item.quantity + quantity
        if cost_cents is not None:
            item.cost_cents = cost_cents
        item.updated_at = utcnow()

    db.commit()
    db.refresh(item)
    return item


def adjust_quantity(db: Session, item_id: str, delta: int) -> Optional[CollectionItem]:
    """Change an item's quantity by ``delta``.

    Returns the updated item, or ``None`` when the quantity reached 0 and the
    row was deleted.

    Raises:
        LookupError: if the item does not exist
        ValueError: if the result would be negative
    """
    item = db.get(CollectionItem, item_id)
    if item is None:
        raise LookupError(f"Collection item {item_id} not found")

    new_quantity = item.quantity + delta
    if new_quantity < 0:
        raise ValueError(
            f"Cannot remove {-delta} copies of item {item_id}: only {item.quantity} held"
        )

    if new_quantity == 0:
        db.delete(item)
        db.commit()
        return None

    item.quantity = new_quantity
    item.updated_at = utcnow()
    db.commit()
    db.refresh(item)
    return item


# ---------------------------------------------------------------------------
# Market catalog
# ---------------------------------------------------------------------------


def register_market_item(
    db: Session,
    game: str,
    canonical_source: str,
    canonical_id: str,
    external_ids: Optional[Mapping[str, str]] = None,
    display_name: Optional[str] = None,
    set_name: Optional[str] = None,
    number: Optional[str] = None,
    variant_type: Optional[str] = None,
) -> MarketItem:
    """Create or update a market item and its external-id mappings.

    ``external_ids`` maps a price source name (``tcgplayer``, ``scryfall``...)
    to the id that source uses for this item.
    """
    market_item = (
        db.query(MarketItem)
        .filter(
            MarketItem.game == game,
            MarketItem.canonical_source == canonical_source,
            MarketItem.canonical_id == canonical_id,
        )
        .one_or_none()
    )
    if market_item is None:
        market_item = MarketItem(game=game, canonical_source=canonical_source, canonical_id=canonical_id)
        db.add(market_item)
        db.flush()

    if display_name is not None:
        market_item.display_name = display_name
    if set_name is not None:
        market_item.set_name = set_name
    if number is not None:
        market_item.number = number

    for source, external_id in (external_ids or {}).items():
        mapping = db.get(MarketItemExternalId, (source, external_id))
        if mapping is None:
            mapping = MarketItemExternalId(source=source, external_id=external_id)
            db.add(mapping)
        mapping.market_item_id = market_item.id
        mapping.variant_type = variant_type

    db.commit()
    db.refresh(market_item)
    return market_item


# ---------------------------------------------------------------------------
# Read queries
# ---------------------------------------------------------------------------


def get_portfolio_history(
    db: Session,
    user_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 365,
) -> List[DailyPortfolioValuation]:
    """Daily portfolio rows for a user, oldest first."""
    query = db.query(DailyPortfolioValuation).filter(DailyPortfolioValuation.user_id == user_id)
    if start_date is not None:
        query = query.filter(DailyPortfolioValuation.as_of_date >= start_date)
    if end_date is not None:
        query = query.filter(DailyPortfolioValuation.as_of_date <= end_date)

    rows = query.order_by(DailyPortfolioValuation.as_of_date.desc()).limit(limit).all()
    return list(reversed(rows))


def get_latest_portfolio(db: Session, user_id: str) -> Optional[DailyPortfolioValuation]:
    return (
        db.query(DailyPortfolioValuation)
        .filter(DailyPortfolioValuation.user_id == user_id)
        .order_by(DailyPortfolioValuation.as_of_date.desc())
        .first()
    )


def get_item_valuations(db: Session, user_id: str, as_of: date) -> List[ItemValuation]:
    return (
        db.query(ItemValuation)
        .filter(ItemValuation.user_id == user_id, ItemValuation.as_of_date == as_of)
        .order_by(ItemValuation.item_id, ItemValuation.source)
        .all()
    )


def get_collection_summary(db: Session, user_id: str) -> Dict[str, Optional[int]]:
    """Cached value of a user's collection from ``last_value_cents``.

    ``valued_items`` counts items with a cached value, so a dashboard can tell
    "not valued yet" (None total) from "valued at zero".
    """
    items = db.query(CollectionItem).filter(CollectionItem.user_id == user_id).all()
    valued = [i for i in items if i.last_value_cents is not None]
    return {
        "items": len(items),
        "valued_items": len(valued),
        "total_value_cents": sum(i.last_value_cents for i in valued) if valued else None,
    }
