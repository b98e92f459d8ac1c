"""Monetary parsing and currency conversion.

Amounts travel through the system as integer minor units (cents) next to an
explicit 3-letter currency code. Vendor text is parsed here and nowhere else.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from config.settings import get_settings

logger = logging.getLogger("pricing.money")

_NON_NUMERIC = re.compile(r"[^\d.\-]")


def parse_price(value: Any) -> Optional[Decimal]:
    """Parse a vendor price into a positive ``Decimal``.

    Thousands separators and any other non-numeric characters (currency
    symbols, whitespace) are stripped first. Missing, unparseable,
    non-finite and non-positive values all come back as ``None``: a price of
    zero is "no price", never a $0.00 price.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = _NON_NUMERIC.sub("", str(value).replace(",", "").strip())
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            logger.debug("Could not parse price: %r", value)
            return None

    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def to_cents(amount: Decimal) -> int:
    """Round a major-unit amount to integer cents (half up)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_to_cents(value: Any) -> Optional[int]:
    """``parse_price`` followed by ``to_cents``; ``None`` when there is no price."""
    amount = parse_price(value)
    if amount is None:
        return None
    cents = to_cents(amount)
    # Sub-cent prices round to zero, which is still "no price"
    return cents if cents > 0 else None


def cents_to_amount(cents: int) -> Decimal:
    return Decimal(cents) / Decimal(100)


@dataclass
class FxRates:
    """Explicit FX table keyed by ``(from_currency, to_currency)``."""

    rates: Dict[Tuple[str, str], Decimal] = field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> "FxRates":
        settings = get_settings()
        return cls({("EUR", "USD"): Decimal(str(settings.FX_EUR_USD))})

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            return Decimal(1)
        if (src, dst) in self.rates:
            return self.rates[(src, dst)]
        if (dst, src) in self.rates:
            return Decimal(1) / self.rates[(dst, src)]
        raise ValueError(f"No FX rate configured for {src}->{dst}")

    def convert_cents(self, cents: int, from_currency: str, to_currency: str) -> int:
        """Convert an integer amount between currencies, rounding half up."""
        converted = Decimal(cents) * self.rate(from_currency, to_currency)
        return int(converted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
