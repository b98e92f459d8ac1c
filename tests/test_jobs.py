import unittest
from datetime import date

from fixtures import DatabaseTestCase

from revaluation.database.models import DailyPortfolioValuation, RevalueJob
from revaluation.valuation.jobs import (
    claim_next_job,
    enqueue_revalue,
    mark_job_failed,
    run_pending_jobs,
)


class TestRevalueJobs(DatabaseTestCase):
    """Tests for the per-user revaluation job queue."""

    def test_one_active_job_per_user(self):
        first = enqueue_revalue(self.db, "user-1", "2024-01-01")
        self.assertEqual(first.status, "queued")
        self.assertEqual(first.as_of_date, date(2024, 1, 1))

        self.assertIsNone(enqueue_revalue(self.db, "user-1"))
        self.assertIsNotNone(enqueue_revalue(self.db, "user-2"))

    def test_finished_job_allows_new_one(self):
        job = enqueue_revalue(self.db, "user-1")
        mark_job_failed(self.db, job, "boom")
        self.assertIsNotNone(enqueue_revalue(self.db, "user-1"))

    def test_claim_marks_running(self):
        enqueue_revalue(self.db, "user-1")
        job = claim_next_job(self.db)
        self.assertEqual(job.status, "running")
        self.assertIsNotNone(job.started_at)
        self.assertIsNone(claim_next_job(self.db))
        # Running still counts as active
        self.assertIsNone(enqueue_revalue(self.db, "user-1"))

    def test_run_pending_jobs(self):
        self.add_item(user_id="user-1", card_id="base1-4", quantity=2)
        self.add_tcgplayer("base1-4", {"normal": {"market_price": "5.00"}})
        enqueue_revalue(self.db, "user-1", "2024-01-01")
        enqueue_revalue(self.db, "user-2", "2024-01-01")

        results = run_pending_jobs(self.Session)
        self.db.expire_all()

        self.assertEqual(len(results), 2)
        self.assertTrue(all(r.ok for r in results))
        statuses = {job.user_id: job.status for job in self.db.query(RevalueJob).all()}
        self.assertEqual(statuses, {"user-1": "done", "user-2": "done"})
        portfolio = self.db.get(DailyPortfolioValuation, ("user-1", date(2024, 1, 1)))
        self.assertEqual(portfolio.total_value_cents, 1000)

    def test_max_jobs(self):
        enqueue_revalue(self.db, "user-1")
        enqueue_revalue(self.db, "user-2")
        self.assertEqual(len(run_pending_jobs(self.Session, max_jobs=1)), 1)
        self.db.expire_all()
        self.assertEqual(self.db.query(RevalueJob).filter(RevalueJob.status == "queued").count(), 1)


if __name__ == "__main__":
    unittest.main()
