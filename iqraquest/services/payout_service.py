"""
Payout Service for the IqraQuest settlement core.

A payout debits the teacher's wallet at request time and is then sent to
the gateway as a transfer. The transfer outcome arrives asynchronously via
``transfer.*`` webhooks; a failed or reversed transfer is compensated by
crediting the amount back exactly once.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BelowMinimumPayoutError,
    DomainException,
    GatewayError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    NotFoundError,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..core.ulid_helper import generate_ulid
from ..events import EventPublisher, PayoutRequested, PayoutStatusChanged
from ..models.payout import Payout, PayoutStatus
from ..models.user import TeacherProfile
from ..models.wallet import TransactionPurpose
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ledger_service import LedgerService

if TYPE_CHECKING:
    from ..integrations.paystack_client import PaystackClient

logger = logging.getLogger(__name__)


class AutoPayoutResults(TypedDict):
    processed: int
    skipped: int
    failed: int


def payout_reference(payout_id: str) -> str:
    return f"PAYOUT-{payout_id}"


class PayoutService(BaseService):
    """Teacher withdrawals and their gateway transfers."""

    def __init__(
        self,
        db: Session,
        *,
        ledger: Optional[LedgerService] = None,
        publisher: Optional[EventPublisher] = None,
        gateway: Optional["PaystackClient"] = None,
    ):
        super().__init__(db)
        self.payout_repository = RepositoryFactory.create_payout_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.profile_repository = RepositoryFactory.create_teacher_profile_repository(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )
        self.ledger = ledger or LedgerService(db, publisher=self.publisher, gateway=gateway)
        self._gateway = gateway

    @property
    def gateway(self) -> "PaystackClient":
        if self._gateway is None:
            self._gateway = self.ledger.gateway
        return self._gateway

    def available_balance(self, teacher_id: str) -> int:
        """Withdrawable balance. In-flight payouts were debited at request time."""
        return self.ledger.get_balance(teacher_id)

    def _lock_payout(self, payout_id: str) -> Payout:
        payout = self.payout_repository.get_for_update(payout_id)
        if payout is None:
            raise NotFoundError("Payout", payout_id)
        return payout

    def _publish_status(self, payout: Payout, reason: Optional[str] = None) -> None:
        prometheus_metrics.record_payout(payout.status)
        self.publisher.publish(
            PayoutStatusChanged(
                payout_id=payout.id,
                teacher_id=payout.teacher_id,
                amount=int(payout.amount),
                status=payout.status,
                reason=reason,
            )
        )

    @BaseService.measure_operation("payout.request_payout")
    def request_payout(
        self, teacher_id: str, amount: int, *, is_automatic: bool = False
    ) -> Payout:
        """
        Debit the teacher's wallet and open a processing payout.

        Raises:
            BelowMinimumPayoutError: amount is under the configured minimum
            InsufficientFundsError: the wallet cannot cover the amount
        """
        if amount < settings.min_payout_amount:
            raise BelowMinimumPayoutError(amount, settings.min_payout_amount)

        with self.transaction():
            wallet = self.ledger.lock_wallet(teacher_id)
            if wallet.balance < amount:
                raise InsufficientFundsError(
                    required=amount, available=int(wallet.balance), wallet_id=wallet.id
                )

            payout_id = generate_ulid()
            payout = self.payout_repository.create(
                id=payout_id,
                teacher_id=teacher_id,
                amount=amount,
                currency=wallet.currency,
                status=PayoutStatus.PROCESSING.value,
                reference=payout_reference(payout_id),
                is_automatic=is_automatic,
                requested_at=utc_now(),
            )
            self.ledger.post_debit(
                teacher_id,
                amount,
                purpose=TransactionPurpose.PAYOUT,
                reference=f"{TransactionPurpose.PAYOUT.value}:{payout_id}",
                description=f"Payout {payout.reference}",
                metadata={"payout_id": payout_id, "is_automatic": is_automatic},
                payout_id=payout_id,
            )

            profile = self.profile_repository.get_by_user_id(teacher_id)
            if profile is not None:
                profile.last_payout_requested_at = payout.requested_at

            prometheus_metrics.record_payout("requested")
            self.publisher.publish(
                PayoutRequested(
                    payout_id=payout_id,
                    teacher_id=teacher_id,
                    amount=amount,
                    is_automatic=is_automatic,
                )
            )
            self.logger.info(
                "Payout requested",
                extra={"payout_id": payout_id, "teacher_id": teacher_id, "amount": amount},
            )
            return payout

    @BaseService.measure_operation("payout.submit_transfer")
    def submit_transfer(self, payout_id: str) -> Payout:
        """Send a processing payout to the gateway. Gateway refusal fails the payout."""
        payout = self.payout_repository.get_by_id(payout_id)
        if payout is None:
            raise NotFoundError("Payout", payout_id)
        if payout.status != PayoutStatus.PROCESSING.value or payout.transfer_code:
            self.logger.info(
                "Payout not awaiting submission",
                extra={"payout_id": payout.id, "status": payout.status},
            )
            return payout

        profile = self.profile_repository.get_by_user_id(payout.teacher_id)
        if profile is None or not profile.payout_recipient_code:
            return self.mark_failed(payout, {"message": "Teacher has no payout recipient"})

        try:
            data = self.gateway.initiate_transfer(
                amount=int(payout.amount),
                recipient=profile.payout_recipient_code,
                reference=payout.reference,
                reason=f"IqraQuest payout {payout.reference}",
                currency=payout.currency,
            )
        except GatewayError as exc:
            self.logger.error(
                "Transfer initiation failed",
                extra={"payout_id": payout.id, "error": exc.message, "status": exc.http_status},
            )
            return self.mark_failed(
                payout,
                {"message": exc.message, "status_code": exc.http_status, "response": exc.response},
            )

        with self.transaction():
            locked = self._lock_payout(payout.id)
            if locked.status == PayoutStatus.PROCESSING.value:
                locked.transfer_code = data.get("transfer_code")
                locked.gateway_response = data
                locked.processed_at = utc_now()
            return locked

    @BaseService.measure_operation("payout.mark_completed")
    def mark_completed(self, payout: Payout, response: Optional[Dict[str, Any]] = None) -> Payout:
        with self.transaction():
            locked = self._lock_payout(payout.id)
            if locked.status == PayoutStatus.COMPLETED.value:
                return locked
            if locked.status == PayoutStatus.FAILED.value:
                raise InvalidStateTransitionError(
                    "A failed payout cannot be completed",
                    current=locked.status,
                    target=PayoutStatus.COMPLETED.value,
                    entity_id=locked.id,
                )
            locked.status = PayoutStatus.COMPLETED.value
            locked.completed_at = utc_now()
            if response is not None:
                locked.gateway_response = response
            self._publish_status(locked)
            return locked

    @BaseService.measure_operation("payout.mark_failed")
    def mark_failed(self, payout: Payout, response: Optional[Dict[str, Any]] = None) -> Payout:
        """Fail a payout and credit the amount back to the teacher, once."""
        with self.transaction():
            locked = self._lock_payout(payout.id)
            if locked.status == PayoutStatus.FAILED.value:
                self.logger.info("Payout already failed", extra={"payout_id": locked.id})
                return locked
            if locked.status == PayoutStatus.COMPLETED.value:
                raise InvalidStateTransitionError(
                    "A completed payout cannot be failed",
                    current=locked.status,
                    target=PayoutStatus.FAILED.value,
                    entity_id=locked.id,
                )

            locked.status = PayoutStatus.FAILED.value
            locked.failed_at = utc_now()
            if response is not None:
                locked.gateway_response = response

            if self.transaction_repository.find_for_payout(
                locked.id, TransactionPurpose.PAYOUT_REFUND
            ) is None:
                self.ledger.post_credit(
                    locked.teacher_id,
                    int(locked.amount),
                    purpose=TransactionPurpose.PAYOUT_REFUND,
                    reference=f"{TransactionPurpose.PAYOUT_REFUND.value}:{locked.id}",
                    description=f"Refund of failed payout {locked.reference}",
                    metadata={"payout_id": locked.id},
                    payout_id=locked.id,
                )

            reason = None
            if isinstance(response, dict):
                reason = response.get("reason") or response.get("message")
            self._publish_status(locked, reason=reason)
            self.logger.warning(
                "Payout failed",
                extra={"payout_id": locked.id, "teacher_id": locked.teacher_id, "reason": reason},
            )
            return locked

    def find_processing_by_reference(self, reference: str) -> Optional[Payout]:
        return self.payout_repository.find_one_by(
            reference=reference, status=PayoutStatus.PROCESSING.value
        )

    def _auto_payout_skip_reason(self, profile: TeacherProfile, now: datetime) -> Optional[str]:
        if not profile.payout_method_verified or not profile.payout_recipient_code:
            return "payout_method_unverified"
        if self.payout_repository.has_processing(profile.user_id):
            return "payout_in_progress"
        if profile.last_payout_requested_at is not None and ensure_utc(
            profile.last_payout_requested_at
        ) > now - timedelta(hours=settings.auto_payout_cooldown_hours):
            return "cooldown"
        balance = self.available_balance(profile.user_id)
        if balance < max(settings.min_payout_amount, settings.auto_payout_threshold):
            return "below_threshold"
        return None

    @BaseService.measure_operation("payout.process_automatic_payouts")
    def process_automatic_payouts(self, *, now: Optional[datetime] = None) -> AutoPayoutResults:
        """Withdraw the full balance for every opted-in teacher over the threshold."""
        now = now or utc_now()
        results: AutoPayoutResults = {"processed": 0, "skipped": 0, "failed": 0}

        for profile in self.profile_repository.list_automatic_payout_enabled():
            teacher_id = profile.user_id
            try:
                reason = self._auto_payout_skip_reason(profile, now)
                if reason:
                    results["skipped"] += 1
                    self.logger.debug(
                        "Automatic payout skipped",
                        extra={"teacher_id": teacher_id, "reason": reason},
                    )
                    continue

                payout = self.request_payout(
                    teacher_id, self.available_balance(teacher_id), is_automatic=True
                )
                payout = self.submit_transfer(payout.id)
                if payout.status == PayoutStatus.FAILED.value:
                    results["failed"] += 1
                else:
                    results["processed"] += 1
            except DomainException as exc:
                results["failed"] += 1
                self.logger.warning(
                    "Automatic payout failed",
                    extra={"teacher_id": teacher_id, "error": exc.message, "code": exc.code},
                )
            except Exception:
                results["failed"] += 1
                self.logger.exception(
                    "Automatic payout failed unexpectedly", extra={"teacher_id": teacher_id}
                )

        self.logger.info("Automatic payouts finished", extra=dict(results))
        return results
