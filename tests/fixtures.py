"""Shared database fixtures: every test case gets its own in-memory SQLite."""

import os
import sys
import unittest
from datetime import datetime

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep the module-level engine in revaluation.database.operations off MySQL
os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from revaluation.database.models import (
    Base,
    CollectionItem,
    EbayPrice,
    EffectivePrice,
    ScryfallPrice,
    TcgplayerPrice,
    YgoCardPrice,
)


def make_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class DatabaseTestCase(unittest.TestCase):
    """Creates the full schema before each test and drops it afterwards."""

    def setUp(self):
        self.engine = make_engine()
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    # -- row builders -------------------------------------------------------

    def add_item(self, user_id="user-1", game="pokemon", card_id="base1-4", quantity=1,
                 variant_type="normal", cost_cents=None):
        item = CollectionItem(
            user_id=user_id,
            game=game,
            card_id=card_id,
            quantity=quantity,
            variant_type=variant_type,
            cost_cents=cost_cents,
        )
        self.db.add(item)
        self.db.commit()
        return item

    def add_tcgplayer(self, card_id, buckets=None, updated_at=datetime(2024, 1, 1, 6, 0), **generic):
        row = TcgplayerPrice(card_id=card_id, buckets=buckets, updated_at=updated_at, **generic)
        self.db.add(row)
        self.db.commit()
        return row

    def add_ygo(self, card_id, updated_at=datetime(2024, 1, 1, 6, 0), **prices):
        row = YgoCardPrice(card_id=card_id, updated_at=updated_at, **prices)
        self.db.add(row)
        self.db.commit()
        return row

    def add_scryfall(self, scryfall_id, updated_at=datetime(2024, 1, 1, 6, 0), **prices):
        row = ScryfallPrice(scryfall_id=scryfall_id, updated_at=updated_at, **prices)
        self.db.add(row)
        self.db.commit()
        return row

    def add_effective(self, card_id, effective_usd, game="pokemon", updated_at=datetime(2024, 1, 1, 6, 0)):
        row = EffectivePrice(game=game, card_id=card_id, effective_usd=effective_usd,
                             source="blended", updated_at=updated_at)
        self.db.add(row)
        self.db.commit()
        return row

    def add_ebay(self, card_id, game="mtg", updated_at=datetime(2024, 1, 1, 6, 0), **prices):
        row = EbayPrice(game=game, card_id=card_id, updated_at=updated_at, **prices)
        self.db.add(row)
        self.db.commit()
        return row
