# This file defines the database schema for the revaluation pipeline using SQLAlchemy's ORM.
# It covers the user-owned collection and its valuations, the raw vendor price tables
# populated by the sync jobs, and the catalog-wide market snapshots used for movers.

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, validates
import uuid

from revaluation.dates import utcnow

# Base class for all ORM models
Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class CollectionItem(Base):
    """One line of a user's collection.

    (user, game, card id, variant) is unique: adding the same card again
    increments ``quantity`` instead of creating a second row.
    """

    __tablename__ = "user_collection_items"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "game", "card_id", "variant_type",
            name="ux_collection_items_user_card_variant",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)

    # Raw game label as entered; normalized at valuation time
    game = Column(String(32), nullable=False)

    # External vendor id (TCGdex id, YGOPRODeck id, Scryfall uuid, ...)
    card_id = Column(String(128), nullable=True)
    card_name = Column(String(255), nullable=True)
    set_name = Column(String(255), nullable=True)
    variant_type = Column(String(32), nullable=False, default="normal")
    grading_company = Column(String(32), nullable=True)
    grade_label = Column(String(32), nullable=True)

    quantity = Column(Integer, nullable=False, default=1)

    # Per-copy cost basis
    cost_cents = Column(Integer, nullable=True)

    # Cached total value from the last successful revaluation
    last_value_cents = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    valuations = relationship(
        "ItemValuation", back_populates="item", cascade="all, delete-orphan"
    )

    @validates("quantity")
    def validate_quantity(self, key, value):
        if value is not None and value < 0:
            raise ValueError(f"Collection item quantity must be >= 0, got {value}")
        return value

    @validates("cost_cents")
    def validate_cost(self, key, value):
        if value is not None and value < 0:
            raise ValueError(f"Cost basis must be >= 0 cents, got {value}")
        return value


# ---------------------------------------------------------------------------
# Vendor price tables (raw snapshots, one logical table per vendor)
# Prices are kept as the vendor's text so parsing rules live in one place.
# ---------------------------------------------------------------------------


class TcgplayerPrice(Base):
    """TCGplayer price buckets for a Pokemon card.

    ``buckets`` maps a bucket name (``normal``, ``holofoil``,
    ``reverse_holofoil``, ``first_edition_holofoil`` ...) to an object with
    ``low_price``/``mid_price``/``high_price``/``market_price``.
    """

    __tablename__ = "tcg_card_prices_tcgplayer"

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_id = Column(String(128), nullable=False, index=True)
    buckets = Column(JSON, nullable=True)

    # Card-wide generic price chain used when the variant bucket is unusable
    market_price = Column(String(32), nullable=True)
    mid_price = Column(String(32), nullable=True)
    low_price = Column(String(32), nullable=True)
    high_price = Column(String(32), nullable=True)

    currency = Column(String(3), nullable=False, default="USD")
    url = Column(String(512), nullable=True)
    updated_at = Column(DateTime, nullable=True, index=True)


class CardmarketPrice(Base):
    """Cardmarket price block for a Pokemon card (EUR)."""

    __tablename__ = "tcg_card_prices_cardmarket"

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_id = Column(String(128), nullable=False, index=True)
    trend_price = Column(String(32), nullable=True)
    average_sell_price = Column(String(32), nullable=True)
    avg1 = Column(String(32), nullable=True)
    avg7 = Column(String(32), nullable=True)
    avg30 = Column(String(32), nullable=True)
    low_price = Column(String(32), nullable=True)
    reverse_holo_trend = Column(String(32), nullable=True)
    reverse_holo_sell = Column(String(32), nullable=True)
    reverse_holo_low = Column(String(32), nullable=True)
    currency = Column(String(3), nullable=False, default="EUR")
    url = Column(String(512), nullable=True)
    updated_at = Column(DateTime, nullable=True, index=True)


class YgoCardPrice(Base):
    """YGOPRODeck flat price block for a Yu-Gi-Oh! card.

    ``cardmarket_price`` is quoted in EUR, every other field in USD.
    """

    __tablename__ = "ygo_card_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_id = Column(String(64), nullable=False, index=True)
    tcgplayer_price = Column(String(32), nullable=True)
    cardmarket_price = Column(String(32), nullable=True)
    ebay_price = Column(String(32), nullable=True)
    amazon_price = Column(String(32), nullable=True)
    coolstuffinc_price = Column(String(32), nullable=True)
    updated_at = Column(DateTime, nullable=True, index=True)


class ScryfallPrice(Base):
    """Scryfall-derived prices for an MTG printing."""

    __tablename__ = "mtg_prices_scryfall"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scryfall_id = Column(String(36), nullable=False, index=True)
    usd = Column(String(32), nullable=True)
    usd_foil = Column(String(32), nullable=True)
    usd_etched = Column(String(32), nullable=True)
    eur = Column(String(32), nullable=True)
    updated_at = Column(DateTime, nullable=True, index=True)


class EffectivePrice(Base):
    """Unified per-card "effective" USD price computed by upstream jobs."""

    __tablename__ = "card_prices_effective"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game = Column(String(32), nullable=False, index=True)
    card_id = Column(String(128), nullable=False, index=True)
    effective_usd = Column(String(32), nullable=True)
    source = Column(String(64), nullable=True)
    updated_at = Column(DateTime, nullable=True, index=True)


class EbayPrice(Base):
    """Aggregated eBay sold-listing prices for a card."""

    __tablename__ = "ebay_price_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game = Column(String(32), nullable=False, index=True)
    card_id = Column(String(128), nullable=False, index=True)
    median_price = Column(String(32), nullable=True)
    average_price = Column(String(32), nullable=True)
    low_price = Column(String(32), nullable=True)
    high_price = Column(String(32), nullable=True)
    sample_size = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    updated_at = Column(DateTime, nullable=True, index=True)


# ---------------------------------------------------------------------------
# Valuations written by the revaluation engine
# ---------------------------------------------------------------------------


class ItemValuation(Base):
    """Value of one collection item on one day from one pricing source."""

    __tablename__ = "user_collection_item_valuations"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "item_id", "as_of_date", "source",
            name="ux_uc_item_vals_user_item_date_source",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    item_id = Column(
        String(36),
        ForeignKey("user_collection_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    as_of_date = Column(Date, nullable=False, index=True)
    game = Column(String(32), nullable=True)
    value_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    # Empty string instead of NULL so the unique key always applies
    source = Column(String(64), nullable=False, default="")
    confidence = Column(String(8), nullable=True)
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    item = relationship("CollectionItem", back_populates="valuations")


class DailyPortfolioValuation(Base):
    """Aggregate of a user's item valuations for one day."""

    __tablename__ = "user_collection_daily_valuations"

    user_id = Column(String(64), primary_key=True)
    as_of_date = Column(Date, primary_key=True)
    total_quantity = Column(Integer, nullable=False, default=0)
    distinct_items = Column(Integer, nullable=False, default=0)
    total_cost_cents = Column(Integer, nullable=False, default=0)
    total_value_cents = Column(Integer, nullable=False, default=0)
    realized_pnl_cents = Column(Integer, nullable=True)

    # NULL means "nothing valued", never "zero gain"
    unrealized_pnl_cents = Column(Integer, nullable=True)

    # {"byGame": {"pokemon": {"totalQuantity": .., "distinctItems": .., ...}}}
    breakdown = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Catalog-wide market tracking
# ---------------------------------------------------------------------------


class MarketItem(Base):
    """A priceable catalog item, independent of any user's holdings."""

    __tablename__ = "market_items"
    __table_args__ = (
        UniqueConstraint(
            "game", "canonical_source", "canonical_id",
            name="market_items_game_canonical_source_canonical_id_key",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    game = Column(String(32), nullable=False, index=True)
    kind = Column(String(32), nullable=False, default="card")
    canonical_source = Column(String(32), nullable=False)
    canonical_id = Column(String(128), nullable=False)
    display_name = Column(String(255), nullable=True)
    set_name = Column(String(255), nullable=True)
    number = Column(String(32), nullable=True)
    image_url = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    external_ids = relationship(
        "MarketItemExternalId", back_populates="market_item", cascade="all, delete-orphan"
    )
    snapshots = relationship(
        "MarketPriceSnapshot", back_populates="market_item", cascade="all, delete-orphan"
    )


class MarketItemExternalId(Base):
    """Maps a market item to the id a given price source knows it by."""

    __tablename__ = "market_item_external_ids"

    source = Column(String(32), primary_key=True)
    external_id = Column(String(128), primary_key=True)
    market_item_id = Column(
        String(36), ForeignKey("market_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    variant_type = Column(String(32), nullable=True)
    external_url = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    market_item = relationship("MarketItem", back_populates="external_ids")


class MarketPriceSnapshot(Base):
    """Best known market value of a market item on one day."""

    __tablename__ = "market_price_daily"
    __table_args__ = (
        UniqueConstraint("market_item_id", "as_of_date", name="ux_market_price_daily_item_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    market_item_id = Column(
        String(36), ForeignKey("market_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    as_of_date = Column(Date, nullable=False, index=True)
    currency = Column(String(3), nullable=False, default="USD")
    value_cents = Column(Integer, nullable=False)
    low_cents = Column(Integer, nullable=True)
    high_cents = Column(Integer, nullable=True)
    confidence = Column(String(8), nullable=True)
    sales_count = Column(Integer, nullable=True)
    source = Column(String(32), nullable=True)
    price_field = Column(String(64), nullable=True)
    sources_used = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    market_item = relationship("MarketItem", back_populates="snapshots")


class RevalueJob(Base):
    """Queued request to revalue one user's collection."""

    __tablename__ = "user_revalue_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)

    # queued -> running -> done | failed
    status = Column(String(16), nullable=False, default="queued", index=True)
    as_of_date = Column(Date, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
