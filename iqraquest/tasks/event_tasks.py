"""Delivery of domain events persisted in the background job outbox."""

import logging
from typing import Any, TypedDict

from sqlalchemy.orm import Session

from iqraquest.core.config import settings
from iqraquest.core.job_lock import job_lock
from iqraquest.events.handlers import process_event
from iqraquest.repositories.factory import RepositoryFactory
from iqraquest.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


class DrainJobResults(TypedDict):
    skipped: bool
    delivered: int
    failed: int


def drain_due_events(db: Session, *, limit: int) -> DrainJobResults:
    """Run every due event job through its handler, committing one job at a time."""
    repo = RepositoryFactory.create_background_job_repository(db)
    results: DrainJobResults = {"skipped": False, "delivered": 0, "failed": 0}

    for job in repo.fetch_due(limit=limit):
        job_id, job_type, payload = job.id, job.type, dict(job.payload or {})
        try:
            if not process_event(job_type, payload, db):
                logger.warning("Non-event job %s in outbox: %s", job_id, job_type)
            repo.mark_succeeded(job_id)
            db.commit()
            results["delivered"] += 1
        except Exception as exc:
            db.rollback()
            logger.error(
                "Event job %s (%s) failed: %s", job_id, job_type, exc, exc_info=True
            )
            repo.mark_failed(job_id, str(exc))
            db.commit()
            results["failed"] += 1

    return results


@typed_task(bind=True, name="iqraquest.tasks.event_tasks.drain_event_jobs")
def drain_event_jobs(self: Any) -> DrainJobResults:
    """Deliver queued settlement events to their notification handlers. Runs every minute."""
    with job_lock("drain_event_jobs", ttl_s=120) as acquired:
        if not acquired:
            return {"skipped": True, "delivered": 0, "failed": 0}

        from iqraquest.database import SessionLocal

        db: Session = SessionLocal()
        try:
            return drain_due_events(db, limit=settings.event_jobs_batch_size)
        finally:
            db.close()
