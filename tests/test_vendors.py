import unittest
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

import requests

from fixtures import DatabaseTestCase

from revaluation.database.models import CardmarketPrice, ScryfallPrice, TcgplayerPrice, YgoCardPrice
from revaluation.database.operations import register_market_item
from revaluation.pricing.normalizer import ScryfallPayload, Vendor, YgoprodeckPayload
from revaluation.pricing.resolver import GameId, LivePriceResolver
from revaluation.vendors.fetcher_factory import FetcherFactory
from revaluation.vendors.pokemontcg import PokemonTcgFetcher
from revaluation.vendors.scryfall import ScryfallFetcher
from revaluation.vendors.ygoprodeck import YgoprodeckFetcher


def json_response(data):
    response = MagicMock()
    response.json.return_value = data
    response.raise_for_status.return_value = None
    return response


def not_found_error():
    response = MagicMock(status_code=404)
    return requests.exceptions.HTTPError("404 Client Error", response=response)


def quiet(fetcher):
    fetcher.min_delay = fetcher.max_delay = 0
    return fetcher


YGO_RESPONSE = {
    "data": [
        {
            "id": 46986414,
            "name": "Dark Magician",
            "card_prices": [
                {
                    "cardmarket_price": "0.10",
                    "tcgplayer_price": "0.25",
                    "ebay_price": "1.99",
                    "amazon_price": "0.50",
                    "coolstuffinc_price": "0.49",
                }
            ],
        },
        {"id": 1, "name": "No prices"},
    ]
}

POKEMON_CARD = {
    "data": {
        "id": "base1-4",
        "name": "Charizard",
        "tcgplayer": {
            "url": "https://prices.pokemontcg.io/tcgplayer/base1-4",
            "updatedAt": "2024/01/15",
            "prices": {
                "holofoil": {"low": 250.0, "mid": 300.0, "high": 500.0, "market": 310.5},
                "reverseHolofoil": {"low": 20.0, "market": None},
                "1stEditionHolofoil": {"market": 5000.0},
            },
        },
        "cardmarket": {
            "url": "https://prices.pokemontcg.io/cardmarket/base1-4",
            "updatedAt": "2024/01/14",
            "prices": {"trendPrice": 280.0, "avg7": 275.5, "lowPrice": 200.0, "reverseHoloTrend": 0},
        },
    }
}


class TestYgoprodeckFetcher(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.session = MagicMock()
        self.session.get.return_value = json_response(YGO_RESPONSE)
        self.fetcher = quiet(YgoprodeckFetcher(url="https://ygo.test/cardinfo.php", session=self.session))

    def test_fetch_parses_first_price_block(self):
        records = self.fetcher.fetch(["46986414", "1"])

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].card_id, "46986414")
        self.assertEqual(records[0].payload, YgoprodeckPayload(
            tcgplayer_price="0.25", cardmarket_price="0.10", ebay_price="1.99",
            amazon_price="0.50", coolstuffinc_price="0.49",
        ))
        self.session.get.assert_called_once_with(
            "https://ygo.test/cardinfo.php", params={"id": "46986414,1"}, timeout=self.fetcher.timeout
        )

    def test_sync_replaces_row(self):
        self.assertEqual(self.fetcher.sync(self.db, ["46986414"]), 1)
        self.session.get.return_value = json_response({
            "data": [{"id": 46986414, "card_prices": [{"tcgplayer_price": "0.30"}]}]
        })
        self.fetcher.sync(self.db, ["46986414"])

        row = self.db.query(YgoCardPrice).one()
        self.assertEqual(row.tcgplayer_price, "0.30")
        self.assertIsNone(row.ebay_price)
        self.assertIsNotNone(row.updated_at)

    def test_network_error_propagates(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("down")
        with self.assertRaises(requests.exceptions.RequestException):
            self.fetcher.fetch(["46986414"])

    def test_non_object_body_is_rejected(self):
        self.session.get.return_value = json_response([{"unexpected": "array"}])
        with self.assertRaises(ValueError):
            self.fetcher.fetch(["46986414"])


class TestPokemonTcgFetcher(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.session = MagicMock()
        self.fetcher = quiet(PokemonTcgFetcher(url="https://pkm.test/v2", api_key="secret", session=self.session))

    def test_api_key_header(self):
        self.session.headers.__setitem__.assert_called_with("X-Api-Key", "secret")

    def test_parses_tcgplayer_and_cardmarket(self):
        self.session.get.return_value = json_response(POKEMON_CARD)
        records = self.fetcher.fetch(["base1-4"])

        self.assertEqual([r.payload.vendor for r in records], [Vendor.TCGPLAYER, Vendor.CARDMARKET])
        tcg = records[0]
        self.assertEqual(set(tcg.payload.buckets), {"holofoil", "reverse_holofoil", "first_edition_holofoil"})
        self.assertEqual(tcg.payload.buckets["holofoil"].market_price, "310.5")
        self.assertEqual(tcg.updated_at, datetime(2024, 1, 15))
        self.assertEqual(records[1].payload.trend_price, "280.0")
        self.session.get.assert_called_once_with("https://pkm.test/v2/cards/base1-4", params=None,
                                                 timeout=self.fetcher.timeout)

    def test_unknown_card_is_skipped(self):
        missing = MagicMock()
        missing.raise_for_status.side_effect = not_found_error()
        self.session.get.side_effect = [missing, json_response(POKEMON_CARD)]

        records = self.fetcher.fetch(["nope-1", "base1-4"])
        self.assertEqual(len(records), 2)

    def test_stored_prices_resolve(self):
        self.session.get.return_value = json_response(POKEMON_CARD)
        self.assertEqual(self.fetcher.sync(self.db, ["base1-4"]), 2)

        self.assertEqual(self.db.query(TcgplayerPrice).count(), 1)
        self.assertEqual(self.db.query(CardmarketPrice).one().currency, "EUR")

        resolver = LivePriceResolver(self.db, base_currency="USD")
        self.assertEqual(resolver.resolve("pokemon", "base1-4", "holofoil").amount, Decimal("310.50"))
        # Reverse bucket has no usable market price, so its low price is used
        self.assertEqual(resolver.resolve("pokemon", "base1-4", "reverse").amount, Decimal("20.00"))
        self.assertEqual(resolver.resolve("pokemon", "base1-4", "first_edition").amount, Decimal("5000"))


class TestScryfallFetcher(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.session = MagicMock()
        self.fetcher = quiet(ScryfallFetcher(url="https://scry.test", session=self.session))

    def test_batches_collection_requests(self):
        self.session.post.return_value = json_response({"data": [], "not_found": []})
        self.fetcher.fetch([f"id-{i}" for i in range(80)])

        self.assertEqual(self.session.post.call_count, 2)
        first_body = self.session.post.call_args_list[0].kwargs["json"]
        self.assertEqual(len(first_body["identifiers"]), 75)
        self.assertEqual(self.session.post.call_args_list[0].args[0], "https://scry.test/cards/collection")

    def test_fetch_payload_and_store(self):
        self.session.post.return_value = json_response({
            "data": [{"id": "abc", "prices": {"usd": "1.10", "usd_foil": None, "usd_etched": None, "eur": "0.90"}}],
            "not_found": [],
        })
        self.assertEqual(self.fetcher.fetch_payload("abc"), ScryfallPayload(usd="1.10", eur="0.90"))

        self.fetcher.sync(self.db, ["abc"])
        row = self.db.query(ScryfallPrice).one()
        self.assertEqual((row.scryfall_id, row.usd, row.eur), ("abc", "1.10", "0.90"))

    def test_fetch_payload_unknown(self):
        self.session.post.return_value = json_response({"data": [], "not_found": [{"id": "zzz"}]})
        self.assertIsNone(self.fetcher.fetch_payload("zzz"))

    def test_non_object_body_is_rejected(self):
        self.session.post.return_value = json_response(["abc"])
        with self.assertRaises(ValueError):
            self.fetcher.fetch_payload("abc")


class TestFetcherFactory(DatabaseTestCase):

    def test_create_known_and_unknown(self):
        self.assertIsInstance(FetcherFactory.create_fetcher("scryfall"), ScryfallFetcher)
        with self.assertRaises(ValueError):
            FetcherFactory.create_fetcher("tcgcollector")

    def test_live_fetchers_cover_supported_games(self):
        fetchers = FetcherFactory.live_fetchers()
        self.assertEqual(set(fetchers), {GameId.POKEMON, GameId.YUGIOH, GameId.MTG})

    def test_tracked_ids(self):
        self.add_item(game="ygo", card_id="46986414")
        self.add_item(game="pokemon", card_id="base1-4")
        self.add_item(user_id="user-2", game="yugioh", card_id="46986414")
        register_market_item(self.db, "yugioh", "ygoprodeck", "89631139",
                             external_ids={"ygoprodeck": "89631139"})
        register_market_item(self.db, "pokemon", "tcgplayer", "base1-2",
                             external_ids={"tcgplayer": "base1-2", "cardmarket": "base1-2"})

        self.assertEqual(FetcherFactory.tracked_ids(self.db, "ygoprodeck"), ["46986414", "89631139"])
        self.assertEqual(FetcherFactory.tracked_ids(self.db, "pokemontcg"), ["base1-2", "base1-4"])
        self.assertEqual(FetcherFactory.tracked_ids(self.db, "scryfall"), [])


if __name__ == "__main__":
    unittest.main()
