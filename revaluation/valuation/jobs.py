"""Revaluation job queue.

A user may have at most one active (queued or running) job. Workers claim the
oldest queued job, run the revaluation engine and record the outcome.
"""

import logging
from datetime import date
from typing import Callable, List, Optional, Union

from sqlalchemy.orm import Session

from revaluation.dates import parse_as_of_date, utcnow
from revaluation.database.models import RevalueJob
from revaluation.pricing.resolver import LivePriceResolver
from revaluation.valuation.engine import RevaluationResult, revalue_user_collection

logger = logging.getLogger("valuation.jobs")

ACTIVE_STATUSES = ("queued", "running")


def enqueue_revalue(
    db: Session, user_id: str, as_of_date: Union[str, date, None] = None
) -> Optional[RevalueJob]:
    """Queue a revaluation for ``user_id``.

    Returns the new job, or ``None`` when the user already has an active one.
    """
    as_of = parse_as_of_date(as_of_date) if as_of_date is not None else None

    active = (
        db.query(RevalueJob)
        .filter(RevalueJob.user_id == user_id, RevalueJob.status.in_(ACTIVE_STATUSES))
        .first()
    )
    if active:
        logger.debug("User %s already has active job %s", user_id, active.id)
        return None

    job = RevalueJob(user_id=user_id, status="queued", as_of_date=as_of, created_at=utcnow())
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def claim_next_job(db: Session) -> Optional[RevalueJob]:
    """Mark the oldest queued job as running and return it."""
    job = (
        db.query(RevalueJob)
        .filter(RevalueJob.status == "queued")
        .order_by(RevalueJob.created_at, RevalueJob.id)
        .first()
    )
    if job is None:
        return None

    job.status = "running"
    job.started_at = job.started_at or utcnow()
    job.error = None
    db.commit()
    return job


def mark_job_done(db: Session, job: RevalueJob) -> None:
    job.status = "done"
    job.finished_at = utcnow()
    job.error = None
    db.commit()


def mark_job_failed(db: Session, job: RevalueJob, error: str) -> None:
    job.status = "failed"
    job.finished_at = utcnow()
    job.error = error
    db.commit()


def run_pending_jobs(
    session_factory: Callable[[], Session],
    max_jobs: Optional[int] = None,
    resolver_factory: Optional[Callable[[Session], LivePriceResolver]] = None,
) -> List[RevaluationResult]:
    """Drain the queue (or at most ``max_jobs`` jobs) sequentially."""
    results = []
    while max_jobs is None or len(results) < max_jobs:
        db = session_factory()
        try:
            job = claim_next_job(db)
            if job is None:
                break

            logger.info("Running revalue job %s for user %s", job.id, job.user_id)
            resolver = resolver_factory(db) if resolver_factory else None
            result = revalue_user_collection(db, job.user_id, job.as_of_date, resolver=resolver)

            if result.ok:
                mark_job_done(db, job)
            else:
                mark_job_failed(db, job, result.error or "revaluation failed")
            results.append(result)
        finally:
            db.close()
    return results
