"""Live Price Resolver.

Answers "what is this card worth right now?" from the vendor price tables.
Each game has an ordered chain of price sources; within one source the most
recently updated row with a usable price wins. The resolver never raises for
missing or malformed data: callers get ``None`` and the reason is logged.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from config.settings import get_settings
from revaluation.dates import end_of_day
from revaluation.database.models import (
    CardmarketPrice,
    EbayPrice,
    EffectivePrice,
    ScryfallPrice,
    TcgplayerPrice,
    YgoCardPrice,
)
from revaluation.pricing.money import FxRates, cents_to_amount
from revaluation.pricing.normalizer import (
    CardmarketPayload,
    Confidence,
    EbayPayload,
    EffectivePayload,
    NormalizedPrice,
    PriceBucket,
    ScryfallPayload,
    TcgplayerPayload,
    Vendor,
    YgoprodeckPayload,
    normalize,
)

logger = logging.getLogger("pricing.resolver")


class GameId(str, Enum):
    POKEMON = "pokemon"
    YUGIOH = "yugioh"
    MTG = "mtg"
    FUNKO = "funko"


_GAME_ALIASES = {
    "pokemon": GameId.POKEMON,
    "pkm": GameId.POKEMON,
    "poke": GameId.POKEMON,
    "mtg": GameId.MTG,
    "magic": GameId.MTG,
    "magic_the_gathering": GameId.MTG,
    "magic: the gathering": GameId.MTG,
    "yugioh": GameId.YUGIOH,
    "ygo": GameId.YUGIOH,
    "yu-gi-oh": GameId.YUGIOH,
    "yu gi oh": GameId.YUGIOH,
    "funko": GameId.FUNKO,
}


def normalize_game(raw: Any) -> Optional[GameId]:
    """Canonical game id for a stored game label, or ``None`` if unknown."""
    if isinstance(raw, GameId):
        return raw
    return _GAME_ALIASES.get(str(raw or "").strip().lower())


# Ordered price sources per game. An empty chain means "no supported vendor".
GAME_SOURCES: Dict[GameId, Tuple[Vendor, ...]] = {
    GameId.POKEMON: (Vendor.TCGPLAYER, Vendor.EFFECTIVE, Vendor.CARDMARKET),
    GameId.YUGIOH: (Vendor.YGOPRODECK,),
    GameId.MTG: (Vendor.SCRYFALL, Vendor.EBAY),
    GameId.FUNKO: (),
}

# Lower wins when two sources were updated at the same moment
SOURCE_PRIORITY: Dict[Vendor, int] = {
    Vendor.TCGPLAYER: 10,
    Vendor.SCRYFALL: 20,
    Vendor.YGOPRODECK: 25,
    Vendor.CARDMARKET: 30,
    Vendor.EFFECTIVE: 35,
    Vendor.EBAY: 50,
}


def is_supported_game(game: Optional[GameId]) -> bool:
    return game is not None and bool(GAME_SOURCES.get(game))


@dataclass(frozen=True)
class LivePrice:
    """A resolved unit price, always in the resolver's base currency.

    Vendor prices quoted in another currency are converted before they are
    returned; one that cannot be converted counts as no price.
    """

    amount: Decimal
    currency: str
    source: str
    confidence: Optional[str]
    field: Optional[str] = None
    updated_at: Optional[datetime] = None
    low_cents: Optional[int] = None
    high_cents: Optional[int] = None
    sales_count: Optional[int] = None


# ---------------------------------------------------------------------------
# Row -> payload builders
# ---------------------------------------------------------------------------


def _tcgplayer_payload(row: TcgplayerPrice) -> TcgplayerPayload:
    buckets = {
        name: PriceBucket.from_mapping(values)
        for name, values in (row.buckets or {}).items()
    }
    return TcgplayerPayload(
        buckets=buckets,
        market_price=row.market_price,
        mid_price=row.mid_price,
        low_price=row.low_price,
        high_price=row.high_price,
        currency=row.currency or "USD",
    )


def _cardmarket_payload(row: CardmarketPrice) -> CardmarketPayload:
    return CardmarketPayload(
        trend_price=row.trend_price,
        average_sell_price=row.average_sell_price,
        avg1=row.avg1,
        avg7=row.avg7,
        avg30=row.avg30,
        low_price=row.low_price,
        reverse_holo_trend=row.reverse_holo_trend,
        reverse_holo_sell=row.reverse_holo_sell,
        reverse_holo_low=row.reverse_holo_low,
        currency=row.currency or "EUR",
    )


def _ygoprodeck_payload(row: YgoCardPrice) -> YgoprodeckPayload:
    return YgoprodeckPayload(
        tcgplayer_price=row.tcgplayer_price,
        cardmarket_price=row.cardmarket_price,
        ebay_price=row.ebay_price,
        amazon_price=row.amazon_price,
        coolstuffinc_price=row.coolstuffinc_price,
    )


def _scryfall_payload(row: ScryfallPrice) -> ScryfallPayload:
    return ScryfallPayload(usd=row.usd, usd_foil=row.usd_foil, usd_etched=row.usd_etched, eur=row.eur)


def _effective_payload(row: EffectivePrice) -> EffectivePayload:
    return EffectivePayload(effective_usd=row.effective_usd, source=row.source)


def _ebay_payload(row: EbayPrice) -> EbayPayload:
    return EbayPayload(
        median_price=row.median_price,
        average_price=row.average_price,
        low_price=row.low_price,
        high_price=row.high_price,
        sample_size=row.sample_size,
        currency=row.currency or "USD",
    )


# vendor -> (model, id column name, filters by game, payload builder)
SOURCE_TABLES: Dict[Vendor, Tuple[Any, str, bool, Callable[[Any], Any]]] = {
    Vendor.TCGPLAYER: (TcgplayerPrice, "card_id", False, _tcgplayer_payload),
    Vendor.CARDMARKET: (CardmarketPrice, "card_id", False, _cardmarket_payload),
    Vendor.YGOPRODECK: (YgoCardPrice, "card_id", False, _ygoprodeck_payload),
    Vendor.SCRYFALL: (ScryfallPrice, "scryfall_id", False, _scryfall_payload),
    Vendor.EFFECTIVE: (EffectivePrice, "card_id", True, _effective_payload),
    Vendor.EBAY: (EbayPrice, "card_id", True, _ebay_payload),
}

# Game assumed for game-scoped tables when a lookup does not name one
_DEFAULT_TABLE_GAME = {Vendor.EFFECTIVE: GameId.POKEMON, Vendor.EBAY: GameId.MTG}


class LivePriceResolver:
    """Resolve the freshest usable price for a card.

    Args:
        db: Database session used for the vendor table reads
        fx: FX table for converting foreign-currency vendors to ``base_currency``
        base_currency: Currency every resolved price is expressed in
        fetchers: Optional live fallbacks keyed by game; each exposes
            ``fetch_payload(external_id)`` returning a vendor payload or None
        max_rows: How many snapshots per id to scan for a usable price
    """

    def __init__(
        self,
        db: Session,
        fx: Optional[FxRates] = None,
        base_currency: Optional[str] = None,
        fetchers: Optional[Mapping[GameId, Any]] = None,
        max_rows: int = 10,
    ):
        self.db = db
        self.fx = fx if fx is not None else FxRates.from_settings()
        self.base_currency = (base_currency or get_settings().BASE_CURRENCY).upper()
        self.fetchers = dict(fetchers or {})
        self.max_rows = max_rows

    def resolve(
        self, game: Any, external_id: Optional[str], variant_type: Optional[str] = None
    ) -> Optional[LivePrice]:
        """Walk the game's source chain and return the first hit, else None."""
        game_id = normalize_game(game)
        if not is_supported_game(game_id):
            logger.debug("No supported price source for game %r", game)
            return None
        if not external_id:
            return None

        for vendor in GAME_SOURCES[game_id]:
            price = self.lookup(vendor, external_id, variant_type, game=game_id)
            if price is not None:
                return price

        price = self._fetch_live(game_id, external_id, variant_type)
        if price is None:
            logger.debug("No price for %s card %s", game_id.value, external_id)
        return price

    def lookup(
        self,
        vendor: Vendor,
        external_id: str,
        variant_type: Optional[str] = None,
        game: Optional[GameId] = None,
        as_of: Optional[date] = None,
    ) -> Optional[LivePrice]:
        """Freshest usable price for ``external_id`` from a single source.

        With ``as_of`` only rows updated on or before that UTC day count.
        """
        if vendor not in SOURCE_TABLES:
            return None

        for row in self._latest_rows(vendor, external_id, game, as_of):
            builder = SOURCE_TABLES[vendor][3]
            try:
                normalized = normalize(builder(row), variant_type)
                if normalized is None:
                    continue
                return self._to_live_price(vendor, normalized, row.updated_at)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(
                    "Malformed %s price row for %s (game=%s): %s",
                    vendor.value, external_id, game.value if game else None, e,
                )
        return None

    def _latest_rows(
        self, vendor: Vendor, external_id: str, game: Optional[GameId], as_of: Optional[date]
    ) -> List[Any]:
        model, id_column, game_scoped, _ = SOURCE_TABLES[vendor]
        query = self.db.query(model).filter(getattr(model, id_column) == str(external_id))

        if game_scoped:
            table_game = game or _DEFAULT_TABLE_GAME[vendor]
            query = query.filter(model.game == table_game.value)

        if as_of is not None:
            query = query.filter(model.updated_at <= end_of_day(as_of))

        # Newest first, undated rows last, then a stable order
        return (
            query.order_by(model.updated_at.is_(None), model.updated_at.desc(), model.id.desc())
            .limit(self.max_rows)
            .all()
        )

    def _to_live_price(
        self, vendor: Vendor, normalized: NormalizedPrice, updated_at: Optional[datetime]
    ) -> LivePrice:
        cents = normalized.amount_cents
        low, high = normalized.low_cents, normalized.high_cents
        confidence = normalized.confidence

        if normalized.currency.upper() != self.base_currency:
            convert = self.fx.convert_cents
            cents = convert(cents, normalized.currency, self.base_currency)
            low = convert(low, normalized.currency, self.base_currency) if low else None
            high = convert(high, normalized.currency, self.base_currency) if high else None
            if confidence == Confidence.A:
                confidence = Confidence.B
            if cents <= 0:
                raise ValueError(f"{vendor.value} price converted to a non-positive amount")

        return LivePrice(
            amount=cents_to_amount(cents),
            currency=self.base_currency,
            source=vendor.value,
            confidence=confidence.value if confidence else None,
            field=normalized.field,
            updated_at=updated_at,
            low_cents=low,
            high_cents=high,
            sales_count=normalized.sales_count,
        )

    def _fetch_live(
        self, game: GameId, external_id: str, variant_type: Optional[str]
    ) -> Optional[LivePrice]:
        fetcher = self.fetchers.get(game)
        if fetcher is None:
            return None
        try:
            payload = fetcher.fetch_payload(external_id)
            if payload is None:
                return None
            normalized = normalize(payload, variant_type)
            if normalized is None:
                return None
            return self._to_live_price(payload.vendor, normalized, None)
        except requests.exceptions.RequestException as e:
            logger.warning("Live %s fetch failed for %s: %s", game.value, external_id, e)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("Malformed live %s payload for %s: %s", game.value, external_id, e)
        return None
