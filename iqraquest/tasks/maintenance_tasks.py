"""Maintenance tasks: gateway charge verification and webhook ledger retention."""

from datetime import timedelta
import logging
from typing import Any, List, TypedDict

from sqlalchemy.orm import Session

from iqraquest.core.config import settings
from iqraquest.core.exceptions import DomainException
from iqraquest.core.job_lock import job_lock
from iqraquest.core.timezone_utils import utc_now
from iqraquest.models.wallet import TransactionStatus
from iqraquest.repositories.factory import RepositoryFactory
from iqraquest.services.ledger_service import LedgerService
from iqraquest.services.webhook_ledger_service import WebhookLedgerService
from iqraquest.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


class VerifyChargesResults(TypedDict):
    skipped: bool
    checked: int
    completed: int
    failed: int
    pending: int
    errors: List[str]


class PurgeResults(TypedDict):
    skipped: bool
    deleted: int


def verify_stale_charges(db: Session, *, limit: int = 100) -> VerifyChargesResults:
    """Ask the gateway about charges whose webhook never arrived."""
    cutoff = utc_now() - timedelta(minutes=settings.pending_charge_verify_after_minutes)
    stale = RepositoryFactory.create_transaction_repository(db).list_stale_pending_charges(
        cutoff, limit=limit
    )
    references = [txn.reference for txn in stale]
    ledger = LedgerService(db)
    results: VerifyChargesResults = {
        "skipped": False,
        "checked": 0,
        "completed": 0,
        "failed": 0,
        "pending": 0,
        "errors": [],
    }

    for reference in references:
        results["checked"] += 1
        try:
            status = ledger.verify_pending_charge(reference)
        except DomainException as exc:
            results["errors"].append(reference)
            logger.warning(f"Could not verify charge {reference}: {exc.message}")
            continue
        except Exception as exc:
            results["errors"].append(reference)
            logger.error(f"Unexpected error verifying charge {reference}: {exc}", exc_info=True)
            continue

        if status == TransactionStatus.COMPLETED.value:
            results["completed"] += 1
        elif status == TransactionStatus.FAILED.value:
            results["failed"] += 1
        else:
            results["pending"] += 1

    return results


@typed_task(bind=True, max_retries=3, name="iqraquest.tasks.maintenance_tasks.verify_pending_charges")
def verify_pending_charges(self: Any) -> VerifyChargesResults:
    with job_lock("verify_pending_charges") as acquired:
        if not acquired:
            return {
                "skipped": True,
                "checked": 0,
                "completed": 0,
                "failed": 0,
                "pending": 0,
                "errors": [],
            }

        from iqraquest.database import SessionLocal

        db: Session = SessionLocal()
        try:
            results = verify_stale_charges(db)
            logger.info(
                f"Verified {results['checked']} pending charges: "
                f"{results['completed']} completed, {results['failed']} failed"
            )
            return results
        finally:
            db.close()


@typed_task(bind=True, max_retries=3, name="iqraquest.tasks.maintenance_tasks.purge_webhook_events")
def purge_webhook_events(self: Any) -> PurgeResults:
    """Delete processed and ignored webhook events past the retention period."""
    with job_lock("purge_webhook_events") as acquired:
        if not acquired:
            return {"skipped": True, "deleted": 0}

        from iqraquest.database import SessionLocal

        db: Session = SessionLocal()
        try:
            return {"skipped": False, "deleted": WebhookLedgerService(db).purge_expired()}
        except Exception as exc:
            logger.error(f"Webhook purge failed: {exc}")
            raise self.retry(exc=exc, countdown=600)
        finally:
            db.close()
