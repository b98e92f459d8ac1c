# Abstract base class for vendor price-feed fetchers.
# A fetcher pulls raw price blocks from one vendor API, turns them into vendor
# payloads and writes them to that vendor's price table.

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session


@dataclass
class PriceRecord:
    """One card's raw price block as returned by a vendor."""

    card_id: str
    payload: Any
    updated_at: Optional[datetime] = None
    url: Optional[str] = None


class BaseFetcher(abc.ABC):
    """Base class for vendor price fetchers.

    Every vendor integration implements the same two steps, ``fetch`` and
    ``store``, so the nightly sync can treat all of them alike.
    """

    def __init__(self, name: str, url: str):
        """Initialize the fetcher.

        Args:
            name: Source identifier (e.g. "ygoprodeck"), used in logs
            url: Base URL of the vendor API
        """
        self.name = name
        self.url = url

    @abc.abstractmethod
    def fetch(self, card_ids: Iterable[str]) -> List[PriceRecord]:
        """Fetch price blocks for ``card_ids``.

        Unknown ids are simply absent from the result. Network failures raise
        ``requests.RequestException``.
        """
        raise NotImplementedError("Concrete fetchers must implement fetch()")

    @abc.abstractmethod
    def store(self, db: Session, records: List[PriceRecord]) -> int:
        """Upsert ``records`` into the vendor table; returns rows written."""
        raise NotImplementedError("Concrete fetchers must implement store()")

    def sync(self, db: Session, card_ids: Iterable[str]) -> int:
        """Fetch and store in one step."""
        records = self.fetch(list(card_ids))
        return self.store(db, records)

    def fetch_payload(self, external_id: str) -> Optional[Any]:
        """Live lookup of a single card's first payload, used by the resolver."""
        records = self.fetch([external_id])
        return records[0].payload if records else None


def upsert_price_row(db: Session, model: Any, id_column: str, external_id: str, values: dict) -> Any:
    """Overwrite the newest vendor row for ``external_id`` or insert a new one.

    Sync passes keep one live row per card; the caller commits.
    """
    column = getattr(model, id_column)
    row = (
        db.query(model)
        .filter(column == external_id)
        .order_by(model.updated_at.is_(None), model.updated_at.desc(), model.id.desc())
        .first()
    )
    if row is None:
        row = model(**{id_column: external_id})
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    return row


def price_text(value: Any) -> Optional[str]:
    """Vendor price as stored text; ``None`` stays ``None``."""
    if value is None or value == "":
        return None
    return str(value)
