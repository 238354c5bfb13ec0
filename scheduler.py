"""
scheduler.py
------------
Drive recurring series from the ``recurring_jobs`` table.

Each row is the persisted state of one series.  A pass over the table
fires every due job, oldest trigger first, and catches a job up one
trigger at a time so a series never produces two overlapping instances.
The timer itself is external: run this module from cron, a systemd timer
or any other clock.

Usage:

    python -m scheduler [--now 2024-05-01T09:00:00]
"""

import argparse
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import recurrence
from database import RecurringJob, SessionLocal, Transaction, init_db
from errors import NotFoundError
from recurrence import RecurringSeries, SeriesState
from repositories import add_transaction
from settings import configure_logging, utc_now

logger = logging.getLogger(__name__)


def _series_from_job(job: RecurringJob) -> RecurringSeries:
    return RecurringSeries(
        frequency=recurrence.Frequency(job.frequency),
        anchor_at=job.anchor_at,
        end_at=job.end_at,
        max_count=job.max_count,
        occurrences=job.occurrences or 0,
        state=SeriesState(job.state),
        last_error=job.last_error,
    )


def _sync_job(job: RecurringJob, series: RecurringSeries) -> None:
    job.occurrences = series.occurrences
    job.state = series.state.value
    job.next_run_at = series.next_trigger
    job.last_error = series.last_error


def start_series(db: Session, template: Transaction, frequency=None, end_at=None,
                 count: Optional[int] = None) -> RecurringJob:
    """
    Register a series for ``template`` and return its job row (the handle).

    Recurrence settings default to the ones stored on the template.
    """
    series = recurrence.start_series(
        template,
        frequency or template.recurrence_frequency,
        end_at if end_at is not None else template.recurrence_end_date,
        count if count is not None else template.recurrence_count,
    )
    job = RecurringJob(
        owner_id=template.owner_id,
        template_id=template.id,
        frequency=series.frequency.value,
        anchor_at=series.anchor_at,
        end_at=series.end_at,
        max_count=series.max_count,
    )
    _sync_job(job, series)
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(
        "Scheduled %s series %s for transaction %s, first trigger %s",
        job.frequency, job.id, template.id, job.next_run_at,
    )
    return job


def get_series(db: Session, owner_id: int, job_id: int) -> RecurringJob:
    job = db.query(RecurringJob).filter(RecurringJob.id == job_id, RecurringJob.owner_id == owner_id).first()
    if not job:
        raise NotFoundError("Recurring series not found")
    return job


def list_series(db: Session, owner_id: int) -> List[RecurringJob]:
    return (
        db.query(RecurringJob)
        .filter(RecurringJob.owner_id == owner_id)
        .order_by(RecurringJob.created_at.desc(), RecurringJob.id.desc())
        .all()
    )


def cancel_series(db: Session, job_id: int, owner_id: int, reason: str = "Canceled by user") -> RecurringJob:
    job = get_series(db, owner_id, job_id)
    series = _series_from_job(job)
    series.cancel(reason)
    _sync_job(job, series)
    db.commit()
    db.refresh(job)
    logger.info("Recurring series %s is now %s", job.id, job.state)
    return job


def fire_job(db: Session, job: RecurringJob, now: datetime) -> List[Transaction]:
    """Catch one job up to ``now``; returns the transactions it created."""
    series = _series_from_job(job)
    template = job.template
    if template is None:
        series.cancel("Template transaction no longer exists")
        _sync_job(job, series)
        db.commit()
        return []

    created = []
    while series.is_due(now):
        trigger = series.next_trigger
        try:
            txn = series.fire(template, lambda payload: add_transaction(db, job.owner_id, payload))
            _sync_job(job, series)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Storage error firing series %s at %s; will retry on the next pass", job.id, trigger)
            break

        if txn is not None:
            created.append(txn)
            logger.info("Series %s created transaction %s for %s", job.id, txn.id, trigger)
        if series.state is SeriesState.CANCELED:
            logger.warning("Series %s canceled: %s", job.id, series.last_error)
    return created


def run_due_series(db: Session, now: Optional[datetime] = None) -> List[Transaction]:
    """One scheduling pass over every scheduled job due at ``now``."""
    now = now or utc_now()
    jobs = (
        db.query(RecurringJob)
        .filter(RecurringJob.state == SeriesState.SCHEDULED.value, RecurringJob.next_run_at <= now)
        .order_by(RecurringJob.next_run_at.asc(), RecurringJob.id.asc())
        .all()
    )
    created = []
    for job in jobs:
        created.extend(fire_job(db, job, now))
    return created


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Materialize due recurring transactions")
    parser.add_argument("--now", type=datetime.fromisoformat, default=None,
                        help="Treat this ISO timestamp as the current time")
    args = parser.parse_args(argv)

    configure_logging()
    init_db()
    db = SessionLocal()
    try:
        created = run_due_series(db, args.now)
    finally:
        db.close()
    logger.info("Scheduler pass created %d transactions", len(created))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
