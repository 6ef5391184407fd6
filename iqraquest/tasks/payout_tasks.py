"""Payout tasks: the daily automatic payout batch and transfer submission."""

import logging
from typing import Any, Dict, TypedDict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from iqraquest.core.exceptions import NotFoundError, ServiceException
from iqraquest.core.job_lock import job_lock
from iqraquest.services.payout_service import PayoutService
from iqraquest.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


class AutoPayoutJobResults(TypedDict):
    skipped: bool
    processed: int
    failed: int
    not_eligible: int


@typed_task(
    bind=True, max_retries=3, name="iqraquest.tasks.payout_tasks.process_automatic_payouts"
)
def process_automatic_payouts(self: Any) -> AutoPayoutJobResults:
    """Withdraw balances for teachers who opted in to automatic payouts. Runs daily."""
    with job_lock("process_automatic_payouts") as acquired:
        if not acquired:
            logger.info("Automatic payouts already running; skipping")
            return {"skipped": True, "processed": 0, "failed": 0, "not_eligible": 0}

        from iqraquest.database import SessionLocal

        db: Session = SessionLocal()
        try:
            results = PayoutService(db).process_automatic_payouts()
            return {
                "skipped": False,
                "processed": results["processed"],
                "failed": results["failed"],
                "not_eligible": results["skipped"],
            }
        except Exception as exc:
            logger.error(f"Automatic payout job failed: {exc}")
            raise self.retry(exc=exc, countdown=600)
        finally:
            db.close()


@typed_task(
    bind=True,
    max_retries=5,
    name="iqraquest.tasks.payout_tasks.submit_payout_transfer",
    autoretry_for=(SQLAlchemyError, ServiceException),
    retry_backoff=True,
    retry_backoff_max=600,
)
def submit_payout_transfer(self: Any, payout_id: str) -> Dict[str, Any]:
    """
    Send a processing payout to the gateway.

    Idempotent: a payout that already has a transfer code, or is no longer
    processing, is returned unchanged.
    """
    from iqraquest.database import SessionLocal

    db: Session = SessionLocal()
    try:
        payout = PayoutService(db).submit_transfer(payout_id)
        return {
            "status": payout.status,
            "payout_id": payout.id,
            "transfer_code": payout.transfer_code,
        }
    except NotFoundError:
        logger.error("Payout not found: %s", payout_id)
        return {"status": "error", "reason": "payout_not_found"}
    finally:
        db.close()
