from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from config.settings import get_settings
from revaluation.dates import utcnow
from revaluation.database.models import ScryfallPrice
from revaluation.pricing.normalizer import ScryfallPayload
from revaluation.vendors.base import PriceRecord, price_text, upsert_price_row
from revaluation.vendors.http_base import HttpFetcherBase

# Scryfall's /cards/collection endpoint takes at most 75 identifiers
BATCH_SIZE = 75


class ScryfallFetcher(HttpFetcherBase):
    """Price fetcher for Scryfall (Magic: The Gathering), keyed by Scryfall id."""

    def __init__(self, url: Optional[str] = None, **kwargs):
        super().__init__("scryfall", url or get_settings().SCRYFALL_API_URL, **kwargs)

    def fetch(self, card_ids: Iterable[str]) -> List[PriceRecord]:
        ids = [str(card_id) for card_id in card_ids if card_id]
        endpoint = f"{self.url.rstrip('/')}/cards/collection"
        records = []
        for start in range(0, len(ids), BATCH_SIZE):
            batch = ids[start:start + BATCH_SIZE]
            data = self.post_json(endpoint, {"identifiers": [{"id": card_id} for card_id in batch]})
            not_found = data.get("not_found") or []
            if not_found:
                self.logger.debug("Scryfall did not find %d of %d ids", len(not_found), len(batch))
            for card in data.get("data", []):
                record = self._parse_card(card)
                if record is not None:
                    records.append(record)
        self.logger.info("Fetched %d Scryfall price blocks for %d ids", len(records), len(ids))
        return records

    def _parse_card(self, card: Dict[str, Any]) -> Optional[PriceRecord]:
        if not card.get("id"):
            return None
        prices = card.get("prices") or {}
        payload = ScryfallPayload(
            usd=price_text(prices.get("usd")),
            usd_foil=price_text(prices.get("usd_foil")),
            usd_etched=price_text(prices.get("usd_etched")),
            eur=price_text(prices.get("eur")),
        )
        return PriceRecord(card_id=card["id"], payload=payload, updated_at=utcnow(), url=card.get("scryfall_uri"))

    def store(self, db: Session, records: List[PriceRecord]) -> int:
        for record in records:
            payload = record.payload
            values = {
                "usd": payload.usd,
                "usd_foil": payload.usd_foil,
                "usd_etched": payload.usd_etched,
                "eur": payload.eur,
                "updated_at": record.updated_at or utcnow(),
            }
            upsert_price_row(db, ScryfallPrice, "scryfall_id", record.card_id, values)
        db.commit()
        return len(records)
