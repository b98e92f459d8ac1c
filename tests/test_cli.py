import json
import unittest
from datetime import date
from unittest.mock import patch

from click.testing import CliRunner

from fixtures import DatabaseTestCase

import cli
from revaluation.database.models import (
    CollectionItem,
    DailyPortfolioValuation,
    MarketItem,
    MarketPriceSnapshot,
    RevalueJob,
)


class TestCli(DatabaseTestCase):
    """Runs the click commands against the per-test SQLite database."""

    def setUp(self):
        super().setUp()
        patcher = patch.object(cli, "SessionLocal", self.Session)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.runner = CliRunner()

    def invoke(self, *args):
        return self.runner.invoke(cli.cli, list(args), obj={})

    def test_add_item_and_revalue(self):
        result = self.invoke("add-item", "-u", "ash", "-g", "pokemon", "-c", "base1-4", "-q", "2", "--cost", "1.50")
        self.assertEqual(result.exit_code, 0, result.output)
        item = self.db.query(CollectionItem).one()
        self.assertEqual(item.cost_cents, 150)

        self.add_tcgplayer("base1-4", {"normal": {"market_price": "5.00"}})
        result = self.invoke("revalue", "--user", "ash", "--date", "2024-01-01")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("ash", result.output)
        portfolio = self.db.get(DailyPortfolioValuation, ("ash", date(2024, 1, 1)))
        self.assertEqual(portfolio.total_value_cents, 1000)

    def test_revalue_needs_a_target(self):
        result = self.invoke("revalue")
        self.assertEqual(result.exit_code, 2)

    def test_revalue_bad_date(self):
        result = self.invoke("revalue", "--all", "--date", "yesterday")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Value error", result.output)

    def test_add_market_item_and_rollup(self):
        result = self.invoke("add-market-item", "-g", "pokemon", "-s", "tcgplayer", "--id", "base1-4",
                             "-e", "cardmarket=base1-4", "--name", "Charizard")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("2 price source(s)", result.output)

        self.add_tcgplayer("base1-4", {"normal": {"market_price": "300.00"}})
        result = self.invoke("rollup", "--date", "2024-01-01")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.db.query(MarketPriceSnapshot).one().value_cents, 30000)

    def test_movers_formats(self):
        result = self.invoke("add-market-item", "-g", "pokemon", "-s", "tcgplayer", "--id", "base1-4")
        self.assertEqual(result.exit_code, 0, result.output)
        item_id = self.db.query(MarketItem).one().id
        for day, cents in ((date(2024, 1, 1), 1000), (date(2024, 1, 5), 1200)):
            self.db.add(MarketPriceSnapshot(market_item_id=item_id, as_of_date=day, currency="USD",
                                            value_cents=cents, source="tcgplayer"))
        self.db.commit()

        result = self.invoke("movers", "--date", "2024-01-05", "-f", "json")
        self.assertEqual(result.exit_code, 0, result.output)
        rows = json.loads(result.output)
        self.assertEqual(rows[0]["canonical_id"], "base1-4")
        self.assertEqual(rows[0]["delta_each_cents"], 200)

        result = self.invoke("movers", "--date", "2024-01-05", "-f", "csv")
        self.assertIn("game,canonical_id,display_name", result.output)

        result = self.invoke("movers", "--date", "2024-01-05", "--days", "0")
        self.assertEqual(result.exit_code, 1)

    def test_nightly_without_sync(self):
        self.add_item(user_id="ash", card_id="base1-4")
        self.add_tcgplayer("base1-4", {"normal": {"market_price": "5.00"}})

        result = self.invoke("nightly", "--skip-sync", "--date", "2024-01-01")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Nightly run complete.", result.output)
        self.assertIsNotNone(self.db.get(DailyPortfolioValuation, ("ash", date(2024, 1, 1))))

    def test_nightly_fail_fast(self):
        with patch.object(cli, "build_market_snapshots", side_effect=RuntimeError("rollup broke")), \
                patch.object(cli, "revalue_all_users") as revalue_all:
            result = self.invoke("nightly", "--skip-sync", "--fail-fast")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("market rollup", result.output)
        revalue_all.assert_not_called()

    def test_jobs(self):
        self.add_item(user_id="ash", card_id="base1-4")
        result = self.invoke("jobs", "enqueue", "-u", "ash")
        self.assertIn("Queued job", result.output)
        result = self.invoke("jobs", "enqueue", "-u", "ash")
        self.assertIn("already has an active", result.output)

        result = self.invoke("jobs", "run")
        self.assertIn("Processed 1 job(s), 0 failed.", result.output)
        self.db.expire_all()
        self.assertEqual(self.db.query(RevalueJob).one().status, "done")


if __name__ == "__main__":
    unittest.main()
