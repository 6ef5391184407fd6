"""Scheduled escrow sweeps: automatic release and no-show detection."""

import logging
from typing import Any, Dict, List, TypedDict

from sqlalchemy.orm import Session

from iqraquest.core.job_lock import job_lock
from iqraquest.services.escrow_service import EscrowService
from iqraquest.services.no_show_service import NoShowService
from iqraquest.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


class ReleaseJobResults(TypedDict):
    skipped: bool
    released: int
    failed: int
    errors: List[Dict[str, str]]


class NoShowJobResults(TypedDict):
    skipped: bool
    warned: int
    processed: int
    failed: int
    errors: List[str]


@typed_task(bind=True, max_retries=3, name="iqraquest.tasks.escrow_tasks.release_eligible_escrow")
def release_eligible_escrow(self: Any) -> ReleaseJobResults:
    """
    Release held funds whose dispute window has elapsed.

    Runs hourly. Each booking is released in its own transaction, so one
    failure does not block the rest of the batch.
    """
    with job_lock("release_eligible_escrow") as acquired:
        if not acquired:
            logger.info("Escrow release already running; skipping")
            return {"skipped": True, "released": 0, "failed": 0, "errors": []}

        from iqraquest.database import SessionLocal

        db: Session = SessionLocal()
        try:
            results = EscrowService(db).process_eligible_releases()
            if results["failed"]:
                logger.warning(f"Escrow release completed with {results['failed']} failures")
            return {"skipped": False, **results}
        except Exception as exc:
            logger.error(f"Escrow release job failed: {exc}")
            raise self.retry(exc=exc, countdown=300)
        finally:
            db.close()


@typed_task(bind=True, max_retries=3, name="iqraquest.tasks.escrow_tasks.detect_no_shows")
def detect_no_shows(self: Any) -> NoShowJobResults:
    """Warn late sessions and settle those past the grace period. Runs every 5 minutes."""
    with job_lock("detect_no_shows") as acquired:
        if not acquired:
            logger.info("No-show detection already running; skipping")
            return {"skipped": True, "warned": 0, "processed": 0, "failed": 0, "errors": []}

        from iqraquest.database import SessionLocal

        db: Session = SessionLocal()
        try:
            results = NoShowService(db).detect()
            logger.info(
                f"No-show detection: {results['warned']} warned, "
                f"{results['processed']} processed, {results['failed']} failed"
            )
            return {"skipped": False, **results}
        except Exception as exc:
            logger.error(f"No-show detection failed: {exc}")
            raise self.retry(exc=exc, countdown=60)
        finally:
            db.close()
