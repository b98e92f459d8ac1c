"""Price Normalizer.

Each vendor's raw price representation is modelled as its own payload class.
``normalize`` dispatches on the payload's ``vendor`` tag to exactly one
normalizer function, and every normalizer reduces its payload to a single
``NormalizedPrice`` (integer cents + currency) or ``None``.

All "first usable field wins" chains go through :func:`first_price`.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Sequence, Tuple

from revaluation.pricing.money import price_to_cents

logger = logging.getLogger("pricing.normalizer")


class Vendor(str, Enum):
    TCGPLAYER = "tcgplayer"
    CARDMARKET = "cardmarket"
    YGOPRODECK = "ygoprodeck"
    SCRYFALL = "scryfall"
    EFFECTIVE = "effective"
    EBAY = "ebay"
    PSA = "psa"


class Confidence(str, Enum):
    A = "A"  # requested variant or a direct per-card field
    B = "B"  # generic fallback field or FX-converted value
    C = "C"  # cross-table fallback


VARIANT_TYPES = ("normal", "holofoil", "reverse_holofoil", "first_edition", "promo")

# Requested variant -> vendor bucket names, tried in order
VARIANT_BUCKETS: Dict[str, Tuple[str, ...]] = {
    "normal": ("normal",),
    "holofoil": ("holofoil",),
    "reverse_holofoil": ("reverse-holofoil", "reverse_holofoil"),
    "first_edition": ("first_edition_holofoil", "first_edition_normal"),
    "promo": ("holofoil", "normal"),
}

_VARIANT_ALIASES = {
    "normal": "normal",
    "holo": "holofoil",
    "holofoil": "holofoil",
    "reverse": "reverse_holofoil",
    "reverse_holo": "reverse_holofoil",
    "reverseholo": "reverse_holofoil",
    "reverse_holofoil": "reverse_holofoil",
    "reverse-holofoil": "reverse_holofoil",
    "first": "first_edition",
    "firstedition": "first_edition",
    "first_edition": "first_edition",
    "promo": "promo",
    "wpromo": "promo",
    "w_promo": "promo",
}


def normalize_variant_type(raw: Optional[str]) -> str:
    """Map a free-form variant label onto the canonical variant set."""
    label = str(raw or "").strip().lower()
    return _VARIANT_ALIASES.get(label, "normal")


# ---------------------------------------------------------------------------
# Shared priority resolution
# ---------------------------------------------------------------------------

FieldAccessor = Tuple[str, Callable[[Any], Any]]


def _read(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def fields(*names: str) -> Tuple[FieldAccessor, ...]:
    """Build accessors that read ``names`` (attribute or mapping key) in order."""
    return tuple((name, lambda obj, _n=name: _read(obj, _n)) for name in names)


def first_price(obj: Any, accessors: Sequence[FieldAccessor]) -> Optional[Tuple[str, int]]:
    """Return ``(label, cents)`` for the first accessor yielding a usable price."""
    for label, accessor in accessors:
        cents = price_to_cents(accessor(obj))
        if cents is not None:
            return label, cents
    return None


BUCKET_PRIORITY = fields("market_price", "mid_price", "low_price", "high_price")
GENERIC_PRIORITY = BUCKET_PRIORITY


# ---------------------------------------------------------------------------
# Vendor payload variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedPrice:
    amount_cents: int
    currency: str
    field: str
    confidence: Confidence = Confidence.A
    low_cents: Optional[int] = None
    high_cents: Optional[int] = None
    sales_count: Optional[int] = None


@dataclass(frozen=True)
class PriceBucket:
    low_price: Any = None
    mid_price: Any = None
    high_price: Any = None
    market_price: Any = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PriceBucket":
        data = data or {}
        return cls(
            low_price=data.get("low_price", data.get("low")),
            mid_price=data.get("mid_price", data.get("mid")),
            high_price=data.get("high_price", data.get("high")),
            market_price=data.get("market_price", data.get("market")),
        )


@dataclass(frozen=True)
class TcgplayerPayload:
    """Bucketed vendor: one PriceBucket per printing plus a card-wide chain."""

    vendor: ClassVar[Vendor] = Vendor.TCGPLAYER

    buckets: Mapping[str, PriceBucket] = field(default_factory=dict)
    market_price: Any = None
    mid_price: Any = None
    low_price: Any = None
    high_price: Any = None
    currency: str = "USD"


@dataclass(frozen=True)
class CardmarketPayload:
    """Cardmarket price block, always EUR."""

    vendor: ClassVar[Vendor] = Vendor.CARDMARKET

    trend_price: Any = None
    average_sell_price: Any = None
    avg1: Any = None
    avg7: Any = None
    avg30: Any = None
    low_price: Any = None
    reverse_holo_trend: Any = None
    reverse_holo_sell: Any = None
    reverse_holo_low: Any = None
    currency: str = "EUR"


@dataclass(frozen=True)
class YgoprodeckPayload:
    """Flat per-source price fields; ``cardmarket_price`` is EUR."""

    vendor: ClassVar[Vendor] = Vendor.YGOPRODECK

    tcgplayer_price: Any = None
    cardmarket_price: Any = None
    ebay_price: Any = None
    amazon_price: Any = None
    coolstuffinc_price: Any = None


@dataclass(frozen=True)
class ScryfallPayload:
    vendor: ClassVar[Vendor] = Vendor.SCRYFALL

    usd: Any = None
    usd_foil: Any = None
    usd_etched: Any = None
    eur: Any = None


@dataclass(frozen=True)
class EffectivePayload:
    vendor: ClassVar[Vendor] = Vendor.EFFECTIVE

    effective_usd: Any = None
    source: Optional[str] = None


@dataclass(frozen=True)
class EbayPayload:
    """Aggregate of recent sold listings."""

    vendor: ClassVar[Vendor] = Vendor.EBAY

    median_price: Any = None
    average_price: Any = None
    low_price: Any = None
    high_price: Any = None
    sample_size: Optional[int] = None
    currency: str = "USD"


@dataclass(frozen=True)
class PsaGradedPayload:
    """Graded price guide joined to a PSA cert lookup."""

    vendor: ClassVar[Vendor] = Vendor.PSA

    cert_number: Optional[str] = None
    grade: Optional[str] = None
    psa_10_price: Any = None
    graded_price: Any = None
    loose_price: Any = None


# ---------------------------------------------------------------------------
# Normalizers, one per payload variant
# ---------------------------------------------------------------------------


def normalize_bucket(bucket: Optional[PriceBucket]) -> Optional[Tuple[str, int]]:
    """market -> mid -> low -> high; first finite value > 0 wins."""
    if bucket is None:
        return None
    return first_price(bucket, BUCKET_PRIORITY)


def _normalize_tcgplayer(payload: TcgplayerPayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    variant_type = normalize_variant_type(variant)
    currency = (payload.currency or "USD").upper()

    for bucket_name in VARIANT_BUCKETS[variant_type]:
        bucket = payload.buckets.get(bucket_name)
        hit = normalize_bucket(bucket)
        if hit:
            label, cents = hit
            return NormalizedPrice(
                amount_cents=cents,
                currency=currency,
                field=f"{bucket_name}.{label}",
                confidence=Confidence.A,
                low_cents=price_to_cents(bucket.low_price),
                high_cents=price_to_cents(bucket.high_price),
            )

    hit = first_price(payload, GENERIC_PRIORITY)
    if hit:
        label, cents = hit
        return NormalizedPrice(
            amount_cents=cents,
            currency=currency,
            field=label,
            confidence=Confidence.B,
            low_cents=price_to_cents(payload.low_price),
            high_cents=price_to_cents(payload.high_price),
        )
    return None


_CARDMARKET_REVERSE = fields("reverse_holo_trend", "reverse_holo_sell", "reverse_holo_low")
_CARDMARKET_GENERIC = fields("trend_price", "average_sell_price", "avg7", "avg30", "avg1", "low_price")


def _normalize_cardmarket(payload: CardmarketPayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    if normalize_variant_type(variant) == "reverse_holofoil":
        hit = first_price(payload, _CARDMARKET_REVERSE)
        if hit:
            return NormalizedPrice(hit[1], payload.currency, hit[0], Confidence.A,
                                   low_cents=price_to_cents(payload.reverse_holo_low))
    hit = first_price(payload, _CARDMARKET_GENERIC)
    if not hit:
        return None
    return NormalizedPrice(hit[1], payload.currency, hit[0], Confidence.A,
                           low_cents=price_to_cents(payload.low_price))


_YGO_FIELDS = fields(
    "tcgplayer_price", "cardmarket_price", "ebay_price", "amazon_price", "coolstuffinc_price"
)
_YGO_CURRENCY = {"cardmarket_price": "EUR"}


def _normalize_ygoprodeck(payload: YgoprodeckPayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    hit = first_price(payload, _YGO_FIELDS)
    if not hit:
        return None
    label, cents = hit
    return NormalizedPrice(cents, _YGO_CURRENCY.get(label, "USD"), label, Confidence.A)


def _normalize_scryfall(payload: ScryfallPayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    if normalize_variant_type(variant) in ("holofoil", "promo"):
        chain = fields("usd_foil", "usd", "usd_etched")
    else:
        chain = fields("usd", "usd_foil", "usd_etched")
    hit = first_price(payload, chain)
    if hit:
        preferred = chain[0][0]
        confidence = Confidence.A if hit[0] == preferred else Confidence.B
        return NormalizedPrice(hit[1], "USD", hit[0], confidence)

    hit = first_price(payload, fields("eur"))
    if hit:
        return NormalizedPrice(hit[1], "EUR", hit[0], Confidence.B)
    return None


def _normalize_effective(payload: EffectivePayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    hit = first_price(payload, fields("effective_usd"))
    if not hit:
        return None
    return NormalizedPrice(hit[1], "USD", payload.source or hit[0], Confidence.C)


def _normalize_ebay(payload: EbayPayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    hit = first_price(payload, fields("median_price", "average_price", "low_price", "high_price"))
    if not hit:
        return None
    return NormalizedPrice(
        amount_cents=hit[1],
        currency=(payload.currency or "USD").upper(),
        field=hit[0],
        confidence=Confidence.C,
        low_cents=price_to_cents(payload.low_price),
        high_cents=price_to_cents(payload.high_price),
        sales_count=payload.sample_size,
    )


def _is_gem_mint(grade: Optional[str]) -> bool:
    tokens = str(grade or "").replace("-", " ").split()
    return bool(tokens) and tokens[-1] == "10"


def _normalize_psa(payload: PsaGradedPayload, variant: Optional[str]) -> Optional[NormalizedPrice]:
    if _is_gem_mint(payload.grade):
        hit = first_price(payload, fields("psa_10_price"))
        if hit:
            return NormalizedPrice(hit[1], "USD", hit[0], Confidence.A)
    hit = first_price(payload, fields("graded_price"))
    if hit:
        return NormalizedPrice(hit[1], "USD", hit[0], Confidence.B)
    hit = first_price(payload, fields("loose_price"))
    if hit:
        return NormalizedPrice(hit[1], "USD", hit[0], Confidence.C)
    return None


NORMALIZERS: Dict[Vendor, Callable[[Any, Optional[str]], Optional[NormalizedPrice]]] = {
    Vendor.TCGPLAYER: _normalize_tcgplayer,
    Vendor.CARDMARKET: _normalize_cardmarket,
    Vendor.YGOPRODECK: _normalize_ygoprodeck,
    Vendor.SCRYFALL: _normalize_scryfall,
    Vendor.EFFECTIVE: _normalize_effective,
    Vendor.EBAY: _normalize_ebay,
    Vendor.PSA: _normalize_psa,
}


def normalize(payload: Any, variant: Optional[str] = None) -> Optional[NormalizedPrice]:
    """Reduce a vendor payload to a single canonical price, or ``None``."""
    normalizer = NORMALIZERS.get(getattr(payload, "vendor", None))
    if normalizer is None:
        raise TypeError(f"Unsupported vendor payload: {type(payload).__name__}")
    price = normalizer(payload, variant)
    if price is None:
        logger.debug("No usable %s price for variant %s", payload.vendor.value, variant)
    return price
