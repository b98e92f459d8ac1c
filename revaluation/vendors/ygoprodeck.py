from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from config.settings import get_settings
from revaluation.dates import utcnow
from revaluation.database.models import YgoCardPrice
from revaluation.pricing.normalizer import YgoprodeckPayload
from revaluation.vendors.base import PriceRecord, price_text, upsert_price_row
from revaluation.vendors.http_base import HttpFetcherBase

# YGOPRODeck accepts a comma separated id list; keep URLs a sane length
BATCH_SIZE = 50

_PRICE_FIELDS = (
    "tcgplayer_price",
    "cardmarket_price",
    "ebay_price",
    "amazon_price",
    "coolstuffinc_price",
)


class YgoprodeckFetcher(HttpFetcherBase):
    """Price fetcher for the YGOPRODeck card database (Yu-Gi-Oh!).

    Each card carries a ``card_prices`` list whose first entry holds one flat
    price per marketplace. ``cardmarket_price`` is EUR, the rest USD.
    """

    def __init__(self, url: Optional[str] = None, **kwargs):
        super().__init__("ygoprodeck", url or get_settings().YGOPRODECK_API_URL, **kwargs)

    def fetch(self, card_ids: Iterable[str]) -> List[PriceRecord]:
        ids = [str(card_id) for card_id in card_ids if card_id]
        records = []
        for start in range(0, len(ids), BATCH_SIZE):
            batch = ids[start:start + BATCH_SIZE]
            data = self.get_json(params={"id": ",".join(batch)})
            for card in data.get("data", []):
                record = self._parse_card(card)
                if record is not None:
                    records.append(record)
        self.logger.info("Fetched %d YGOPRODeck price blocks for %d ids", len(records), len(ids))
        return records

    def _parse_card(self, card: Dict[str, Any]) -> Optional[PriceRecord]:
        prices = card.get("card_prices") or []
        if not prices or card.get("id") is None:
            return None
        block = prices[0]
        payload = YgoprodeckPayload(**{name: price_text(block.get(name)) for name in _PRICE_FIELDS})
        return PriceRecord(card_id=str(card["id"]), payload=payload, updated_at=utcnow())

    def store(self, db: Session, records: List[PriceRecord]) -> int:
        for record in records:
            values = {name: getattr(record.payload, name) for name in _PRICE_FIELDS}
            values["updated_at"] = record.updated_at or utcnow()
            upsert_price_row(db, YgoCardPrice, "card_id", record.card_id, values)
        db.commit()
        return len(records)
