from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import requests
from sqlalchemy.orm import Session

from config.settings import get_settings
from revaluation.dates import utcnow
from revaluation.database.models import CardmarketPrice, TcgplayerPrice
from revaluation.pricing.normalizer import CardmarketPayload, PriceBucket, TcgplayerPayload, Vendor
from revaluation.vendors.base import PriceRecord, price_text, upsert_price_row
from revaluation.vendors.http_base import HttpFetcherBase

# pokemontcg.io bucket keys -> stored bucket names
BUCKET_NAMES = {
    "normal": "normal",
    "holofoil": "holofoil",
    "reverseHolofoil": "reverse_holofoil",
    "1stEditionHolofoil": "first_edition_holofoil",
    "1stEditionNormal": "first_edition_normal",
    "unlimitedHolofoil": "unlimited_holofoil",
}

# pokemontcg.io cardmarket keys -> CardmarketPayload fields
CARDMARKET_FIELDS = {
    "trendPrice": "trend_price",
    "averageSellPrice": "average_sell_price",
    "avg1": "avg1",
    "avg7": "avg7",
    "avg30": "avg30",
    "lowPrice": "low_price",
    "reverseHoloTrend": "reverse_holo_trend",
    "reverseHoloSell": "reverse_holo_sell",
    "reverseHoloLow": "reverse_holo_low",
}


def _parse_updated_at(raw: Optional[str]) -> Optional[datetime]:
    # The API reports dates as "2024/01/15"
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y/%m/%d")
    except ValueError:
        return None


class PokemonTcgFetcher(HttpFetcherBase):
    """Price fetcher for the pokemontcg.io API.

    One card response carries both a TCGplayer block (USD buckets per
    printing) and a Cardmarket block (EUR), so a single card can yield two
    records for two different vendor tables.
    """

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        settings = get_settings()
        super().__init__("pokemontcg", url or settings.POKEMONTCG_API_URL, **kwargs)
        api_key = api_key if api_key is not None else settings.POKEMONTCG_API_KEY
        if api_key:
            self.session.headers["X-Api-Key"] = api_key

    def fetch(self, card_ids: Iterable[str]) -> List[PriceRecord]:
        records = []
        for card_id in card_ids:
            if not card_id:
                continue
            try:
                data = self.get_json(f"{self.url.rstrip('/')}/cards/{card_id}")
            except requests.exceptions.HTTPError as e:
                # Unknown ids come back as 404; skip them and keep going
                if e.response is not None and e.response.status_code == 404:
                    self.logger.debug("pokemontcg.io has no card %s", card_id)
                    continue
                raise
            records.extend(self._parse_card(data.get("data") or {}))
        self.logger.info("Fetched %d pokemontcg.io price blocks", len(records))
        return records

    def _parse_card(self, card: Dict[str, Any]) -> List[PriceRecord]:
        card_id = card.get("id")
        if not card_id:
            return []

        records = []
        tcgplayer = card.get("tcgplayer") or {}
        if tcgplayer.get("prices"):
            buckets = {}
            for key, values in tcgplayer["prices"].items():
                name = BUCKET_NAMES.get(key, key)
                buckets[name] = PriceBucket(
                    low_price=price_text(values.get("low")),
                    mid_price=price_text(values.get("mid")),
                    high_price=price_text(values.get("high")),
                    market_price=price_text(values.get("market")),
                )
            records.append(PriceRecord(
                card_id=card_id,
                payload=TcgplayerPayload(buckets=buckets),
                updated_at=_parse_updated_at(tcgplayer.get("updatedAt")) or utcnow(),
                url=tcgplayer.get("url"),
            ))

        cardmarket = card.get("cardmarket") or {}
        if cardmarket.get("prices"):
            prices = cardmarket["prices"]
            payload = CardmarketPayload(**{
                field_name: price_text(prices.get(key)) for key, field_name in CARDMARKET_FIELDS.items()
            })
            records.append(PriceRecord(
                card_id=card_id,
                payload=payload,
                updated_at=_parse_updated_at(cardmarket.get("updatedAt")) or utcnow(),
                url=cardmarket.get("url"),
            ))
        return records

    def store(self, db: Session, records: List[PriceRecord]) -> int:
        for record in records:
            payload = record.payload
            if payload.vendor == Vendor.TCGPLAYER:
                values = {
                    "buckets": {
                        name: {
                            "low_price": bucket.low_price,
                            "mid_price": bucket.mid_price,
                            "high_price": bucket.high_price,
                            "market_price": bucket.market_price,
                        }
                        for name, bucket in payload.buckets.items()
                    },
                    "currency": payload.currency,
                    "url": record.url,
                    "updated_at": record.updated_at,
                }
                upsert_price_row(db, TcgplayerPrice, "card_id", record.card_id, values)
            else:
                values = {field_name: getattr(payload, field_name) for field_name in CARDMARKET_FIELDS.values()}
                values.update(currency=payload.currency, url=record.url, updated_at=record.updated_at)
                upsert_price_row(db, CardmarketPrice, "card_id", record.card_id, values)
        db.commit()
        return len(records)
