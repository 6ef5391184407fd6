"""
Escrow Service for the IqraQuest settlement core.

Holds a booking's funds from payment until the session outcome is known,
then releases them to the teacher, refunds the student, or splits them.

Every public operation runs in one database transaction that locks the
booking row first and the wallets second. Status guards are re-checked
after the lock is taken, so two workers racing the same booking (a sweep
releasing while a student raises a dispute, a replayed admin action)
serialise and the loser sees the winner's state.

Money movements use deterministic references (``escrow_release:<booking>``
and so on), so a retried operation can never post the same leg twice.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
import logging
from typing import Any, Dict, List, Optional, Tuple, TypedDict, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    DomainException,
    DuplicateHoldError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..events import (
    DisputeRaised,
    DisputeResolved,
    EventPublisher,
    FundsHeld,
    FundsPartiallyReleased,
    FundsRefunded,
    FundsReleased,
)
from ..models.booking import Booking, BookingStatus, NoShowParty, PaymentStatus
from ..models.user import User, UserRole
from ..models.wallet import Transaction, TransactionPurpose, TransactionStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ledger_service import LedgerService

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class DisputeOutcome(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"
    PARTIAL = "partial"


class SessionOutcome(str, Enum):
    REFUNDED = "refunded"
    PARTIALLY_RELEASED = "partially_released"
    AWAITING_RELEASE = "awaiting_release"


class ReleaseSweepResults(TypedDict):
    released: int
    failed: int
    errors: List[Dict[str, str]]


def round_minor(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage_of(amount: int, percentage: Union[Decimal, int, str]) -> int:
    return round_minor(Decimal(amount) * Decimal(str(percentage)) / HUNDRED)


def split_commission(amount: int, commission_rate: Union[Decimal, int, str]) -> Tuple[int, int]:
    """Return ``(teacher_amount, commission)``; the two always sum to ``amount``."""
    commission = percentage_of(amount, commission_rate)
    return amount - commission, commission


def _validate_percentage(value: Union[Decimal, int, float, str], field: str) -> Decimal:
    pct = Decimal(str(value))
    if pct < 0 or pct > HUNDRED:
        raise ValidationException(
            f"{field} must be between 0 and 100", details={field: str(value)}
        )
    return pct


class EscrowService(BaseService):
    """Per-booking fund holds and their settlement."""

    def __init__(
        self,
        db: Session,
        *,
        ledger: Optional[LedgerService] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.earning_repository = RepositoryFactory.create_platform_earning_repository(db)
        self.wallet_repository = RepositoryFactory.create_wallet_repository(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )
        self.ledger = ledger or LedgerService(db, publisher=self.publisher)

    # Helpers

    def lock_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    def held_amount(self, booking: Booking) -> int:
        hold = self.transaction_repository.find_active_hold(booking.id)
        if hold is None or hold.status != TransactionStatus.COMPLETED.value:
            return int(booking.total_price)
        return int(hold.amount)

    def _lock_wallets(self, *user_ids: str) -> None:
        for user_id in user_ids:
            self.wallet_repository.ensure_for_user(user_id, settings.currency)
        self.wallet_repository.lock_for_users(user_ids)

    def _mark_held(self, booking: Booking, at: datetime, amount: int) -> None:
        booking.payment_status = PaymentStatus.HELD.value
        booking.funds_held_at = at
        if booking.status == BookingStatus.AWAITING_PAYMENT.value:
            booking.status = BookingStatus.CONFIRMED.value
        prometheus_metrics.record_escrow_transition("hold")
        self.publisher.publish(
            FundsHeld(
                booking_id=booking.id, student_id=booking.student_id, amount=amount, held_at=at
            )
        )

    def _ensure_can_release(self, booking: Booking, now: datetime) -> None:
        if booking.payment_status != PaymentStatus.HELD.value:
            raise InvalidStateTransitionError(
                "Funds can only be released from a held escrow",
                current=booking.payment_status,
                target=PaymentStatus.RELEASED.value,
                entity_id=booking.id,
            )
        if booking.has_open_dispute:
            raise InvalidStateTransitionError(
                "Booking has an open dispute",
                current=booking.payment_status,
                target=PaymentStatus.RELEASED.value,
                entity_id=booking.id,
            )
        closes_at = booking.dispute_window_closes_at(settings.dispute_window_hours)
        if ensure_utc(now) < closes_at:
            raise InvalidStateTransitionError(
                f"Dispute window is open until {closes_at.isoformat()}",
                current=booking.payment_status,
                target=PaymentStatus.RELEASED.value,
                entity_id=booking.id,
            )

    def _ensure_settleable(self, booking: Booking, target: PaymentStatus) -> None:
        if booking.payment_status == PaymentStatus.DISPUTED.value:
            raise InvalidStateTransitionError(
                "Disputed escrow can only be settled by resolving the dispute",
                current=booking.payment_status,
                target=target.value,
                entity_id=booking.id,
            )
        if booking.payment_status != PaymentStatus.HELD.value:
            raise InvalidStateTransitionError(
                f"Cannot move escrow from {booking.payment_status} to {target.value}",
                current=booking.payment_status,
                target=target.value,
                entity_id=booking.id,
            )

    # Locked settlement legs; callers own the transaction and the booking lock

    def release_locked(self, booking: Booking, now: datetime, reason: str) -> Transaction | None:
        held = self.held_amount(booking)
        teacher_amount, commission = split_commission(held, booking.rate)
        txn = None
        if teacher_amount > 0:
            txn = self.ledger.post_credit(
                booking.teacher_id,
                teacher_amount,
                purpose=TransactionPurpose.ESCROW_RELEASE,
                reference=f"{TransactionPurpose.ESCROW_RELEASE.value}:{booking.id}",
                description=f"Payment for booking {booking.id}",
                metadata={"booking_id": booking.id, "commission": commission, "reason": reason},
                booking_id=booking.id,
            )
        self.earning_repository.create(
            booking_id=booking.id,
            transaction_id=txn.id if txn else None,
            amount=commission,
            commission_rate=booking.commission_rate,
        )

        booking.payment_status = PaymentStatus.RELEASED.value
        booking.funds_released_at = now
        booking.amount_released = teacher_amount
        prometheus_metrics.record_escrow_transition("release")
        self.publisher.publish(
            FundsReleased(
                booking_id=booking.id,
                teacher_id=booking.teacher_id,
                teacher_amount=teacher_amount,
                commission=commission,
                released_at=now,
            )
        )
        self.logger.info(
            "Escrow released",
            extra={
                "booking_id": booking.id,
                "teacher_amount": teacher_amount,
                "commission": commission,
                "reason": reason,
            },
        )
        return txn

    def refund_locked(self, booking: Booking, now: datetime, reason: str) -> Transaction:
        held = self.held_amount(booking)
        txn = self.ledger.post_credit(
            booking.student_id,
            held,
            purpose=TransactionPurpose.ESCROW_REFUND,
            reference=f"{TransactionPurpose.ESCROW_REFUND.value}:{booking.id}",
            description=f"Refund for booking {booking.id}",
            metadata={"booking_id": booking.id, "reason": reason},
            booking_id=booking.id,
        )
        booking.payment_status = PaymentStatus.REFUNDED.value
        booking.funds_refunded_at = now
        booking.amount_refunded = held
        prometheus_metrics.record_escrow_transition("refund")
        self.publisher.publish(
            FundsRefunded(
                booking_id=booking.id,
                student_id=booking.student_id,
                amount=held,
                reason=reason,
                refunded_at=now,
            )
        )
        self.logger.info(
            "Escrow refunded", extra={"booking_id": booking.id, "amount": held, "reason": reason}
        )
        return txn

    def partial_locked(
        self, booking: Booking, teacher_percentage: Decimal, now: datetime, reason: str
    ) -> Dict[str, int]:
        held = self.held_amount(booking)
        teacher_gross = percentage_of(held, teacher_percentage)
        teacher_amount, commission = split_commission(teacher_gross, booking.rate)
        refund_amount = held - teacher_gross

        self._lock_wallets(booking.teacher_id, booking.student_id)
        metadata: Dict[str, Any] = {
            "booking_id": booking.id,
            "teacher_percentage": str(teacher_percentage),
            "reason": reason,
        }

        release_txn = None
        if teacher_amount > 0:
            release_txn = self.ledger.post_credit(
                booking.teacher_id,
                teacher_amount,
                purpose=TransactionPurpose.ESCROW_PARTIAL_RELEASE,
                reference=f"{TransactionPurpose.ESCROW_PARTIAL_RELEASE.value}:{booking.id}",
                description=f"Partial payment ({teacher_percentage}%) for booking {booking.id}",
                metadata={**metadata, "commission": commission},
                booking_id=booking.id,
            )
        if teacher_gross > 0:
            self.earning_repository.create(
                booking_id=booking.id,
                transaction_id=release_txn.id if release_txn else None,
                amount=commission,
                commission_rate=booking.commission_rate,
            )
        if refund_amount > 0:
            self.ledger.post_credit(
                booking.student_id,
                refund_amount,
                purpose=TransactionPurpose.ESCROW_PARTIAL_REFUND,
                reference=f"{TransactionPurpose.ESCROW_PARTIAL_REFUND.value}:{booking.id}",
                description=f"Partial refund for booking {booking.id}",
                metadata=metadata,
                booking_id=booking.id,
            )

        booking.payment_status = PaymentStatus.PARTIALLY_RELEASED.value
        booking.amount_released = teacher_amount
        booking.amount_refunded = refund_amount
        if teacher_amount > 0:
            booking.funds_released_at = now
        if refund_amount > 0:
            booking.funds_refunded_at = now
        prometheus_metrics.record_escrow_transition("partial")
        self.publisher.publish(
            FundsPartiallyReleased(
                booking_id=booking.id,
                teacher_id=booking.teacher_id,
                student_id=booking.student_id,
                teacher_amount=teacher_amount,
                commission=commission,
                refund_amount=refund_amount,
                teacher_percentage=str(teacher_percentage),
                reason=reason,
            )
        )
        return {
            "teacher_amount": teacher_amount,
            "commission": commission,
            "refund_amount": refund_amount,
        }

    def settle_absence_locked(
        self, booking: Booking, now: datetime, reason: str
    ) -> Optional[NoShowParty]:
        """
        Settle a held booking where at least one party did not attend.

        Teacher absent (alone or with the student): full refund and the
        booking is cancelled. Student absent: the configured share goes to
        the teacher and the booking counts as completed. Returns None when
        both parties attended.
        """
        if booking.teacher_attended and booking.student_attended:
            return None

        if not booking.teacher_attended:
            party = NoShowParty.TEACHER if booking.student_attended else NoShowParty.BOTH
            self.refund_locked(booking, now, reason=f"{reason}: {party.value} no-show")
            booking.status = BookingStatus.CANCELLED.value
        else:
            party = NoShowParty.STUDENT
            self.partial_locked(
                booking,
                settings.student_no_show_teacher_percentage,
                now,
                reason=f"{reason}: student no-show",
            )
            booking.status = BookingStatus.COMPLETED.value

        booking.no_show_by = party.value
        return party

    # Public operations

    @BaseService.measure_operation("escrow.create_hold")
    def create_hold(
        self,
        booking: Booking,
        amount: Optional[int] = None,
        *,
        payment_reference: Optional[str] = None,
    ) -> Transaction:
        """
        Open the escrow hold for a booking.

        Without ``payment_reference`` the student's wallet is debited
        immediately. With one, the booking was paid through the gateway and
        the hold stays pending until ``charge.success`` confirms it.
        """
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if (
                locked.payment_status != PaymentStatus.PENDING.value
                or self.transaction_repository.find_active_hold(locked.id) is not None
            ):
                raise DuplicateHoldError(locked.id)

            hold_amount = int(amount if amount is not None else locked.total_price)
            if hold_amount <= 0:
                raise ValidationException(
                    "Hold amount must be positive", details={"amount": hold_amount}
                )

            if payment_reference:
                return self.ledger.record_pending_charge(
                    locked.student_id,
                    hold_amount,
                    purpose=TransactionPurpose.ESCROW_HOLD,
                    reference=payment_reference,
                    description=f"Escrow hold for booking {locked.id}",
                    metadata={"booking_id": locked.id},
                    booking_id=locked.id,
                )

            now = utc_now()
            txn = self.ledger.post_debit(
                locked.student_id,
                hold_amount,
                purpose=TransactionPurpose.ESCROW_HOLD,
                reference=f"{TransactionPurpose.ESCROW_HOLD.value}:{locked.id}",
                description=f"Escrow hold for booking {locked.id}",
                metadata={"booking_id": locked.id},
                booking_id=locked.id,
            )
            self._mark_held(locked, now, hold_amount)
            return txn

    def confirm_gateway_hold_locked(self, txn: Transaction) -> None:
        """Mark a prepaid booking held once its gateway charge settles."""
        if not txn.booking_id:
            self.logger.warning("Escrow hold charge has no booking", extra={"txn": txn.id})
            return
        booking = self.lock_booking(txn.booking_id)
        if booking.payment_status != PaymentStatus.PENDING.value:
            self.logger.info(
                "Booking already past pending; hold confirmation ignored",
                extra={"booking_id": booking.id, "payment_status": booking.payment_status},
            )
            return
        self._mark_held(booking, utc_now(), int(txn.amount))

    @BaseService.measure_operation("escrow.release_to_teacher")
    def release_to_teacher(self, booking: Booking, *, now: Optional[datetime] = None) -> Booking:
        """Pay the teacher once the dispute window has passed. Re-releasing is a no-op."""
        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if locked.payment_status == PaymentStatus.RELEASED.value:
                self.logger.info("Escrow already released", extra={"booking_id": locked.id})
                return locked
            self._ensure_can_release(locked, now)
            self.release_locked(locked, now, reason="dispute_window_elapsed")
            if locked.status == BookingStatus.CONFIRMED.value:
                locked.status = BookingStatus.COMPLETED.value
            return locked

    @BaseService.measure_operation("escrow.refund_to_student")
    def refund_to_student(
        self, booking: Booking, reason: str, *, now: Optional[datetime] = None
    ) -> Booking:
        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if locked.payment_status == PaymentStatus.REFUNDED.value:
                self.logger.info("Escrow already refunded", extra={"booking_id": locked.id})
                return locked
            self._ensure_settleable(locked, PaymentStatus.REFUNDED)
            self.refund_locked(locked, now, reason=reason)
            return locked

    @BaseService.measure_operation("escrow.partial_release")
    def partial_release(
        self,
        booking: Booking,
        teacher_percentage: Union[Decimal, int, str],
        reason: str,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        pct = _validate_percentage(teacher_percentage, "teacher_percentage")
        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if locked.payment_status == PaymentStatus.PARTIALLY_RELEASED.value:
                self.logger.info("Escrow already split", extra={"booking_id": locked.id})
                return locked
            self._ensure_settleable(locked, PaymentStatus.PARTIALLY_RELEASED)
            self.partial_locked(locked, pct, now, reason=reason)
            return locked

    @BaseService.measure_operation("escrow.raise_dispute")
    def raise_dispute(
        self,
        booking: Booking,
        raised_by: str,
        details: str,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        """Contest a session outcome; blocks automatic release until an admin resolves it."""
        if not details or not details.strip():
            raise ValidationException("Dispute details are required")
        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if raised_by not in (locked.student_id, locked.teacher_id):
                raise ValidationException(
                    "Only the booking's student or teacher can raise a dispute",
                    details={"booking_id": locked.id, "raised_by": raised_by},
                )
            if locked.payment_status != PaymentStatus.HELD.value:
                raise InvalidStateTransitionError(
                    "Only held escrow can be disputed",
                    current=locked.payment_status,
                    target=PaymentStatus.DISPUTED.value,
                    entity_id=locked.id,
                )
            if ensure_utc(now) >= locked.dispute_window_closes_at(settings.dispute_window_hours):
                raise InvalidStateTransitionError(
                    "The dispute window for this booking has closed",
                    current=locked.payment_status,
                    target=PaymentStatus.DISPUTED.value,
                    entity_id=locked.id,
                )

            locked.status = BookingStatus.DISPUTED.value
            locked.payment_status = PaymentStatus.DISPUTED.value
            locked.dispute_reason = details.strip()
            locked.dispute_raised_at = now
            locked.dispute_raised_by = raised_by
            prometheus_metrics.record_escrow_transition("dispute")
            self.publisher.publish(
                DisputeRaised(
                    booking_id=locked.id, raised_by=raised_by, reason=details.strip(), raised_at=now
                )
            )
            return locked

    @BaseService.measure_operation("escrow.resolve_dispute")
    def resolve_dispute(
        self,
        booking: Booking,
        outcome: Union[DisputeOutcome, str],
        resolved_by: str,
        resolution: str,
        *,
        teacher_percentage: Optional[Union[Decimal, int, str]] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        try:
            outcome = DisputeOutcome(outcome)
        except ValueError as exc:
            raise ValidationException(
                "Unknown dispute outcome", details={"outcome": str(outcome)}
            ) from exc
        pct = None
        if outcome is DisputeOutcome.PARTIAL:
            if teacher_percentage is None:
                raise ValidationException("teacher_percentage is required for a partial resolution")
            pct = _validate_percentage(teacher_percentage, "teacher_percentage")

        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if locked.payment_status != PaymentStatus.DISPUTED.value:
                raise InvalidStateTransitionError(
                    "Booking has no open dispute",
                    current=locked.payment_status,
                    entity_id=locked.id,
                )

            if outcome is DisputeOutcome.TEACHER:
                self.release_locked(locked, now, reason="dispute_resolved_for_teacher")
                locked.status = BookingStatus.COMPLETED.value
            elif outcome is DisputeOutcome.STUDENT:
                self.refund_locked(locked, now, reason="dispute_resolved_for_student")
                locked.status = BookingStatus.CANCELLED.value
            else:
                self.partial_locked(locked, pct, now, reason="dispute_resolved_partially")
                locked.status = BookingStatus.COMPLETED.value

            locked.dispute_resolved_at = now
            locked.dispute_resolution = resolution
            locked.dispute_resolved_by = resolved_by
            self.publisher.publish(
                DisputeResolved(
                    booking_id=locked.id,
                    outcome=outcome.value,
                    resolved_by=resolved_by,
                    resolution=resolution,
                    resolved_at=now,
                )
            )
            return locked

    @BaseService.measure_operation("escrow.handle_session_completion")
    def handle_session_completion(
        self, booking: Booking, *, now: Optional[datetime] = None
    ) -> SessionOutcome:
        """
        Decide what happens to the held funds once a session has ended.

        Absences settle immediately. A session cut short below the minimum
        completion percentage pays the teacher pro-rata. Otherwise the
        booking is completed and the funds wait out the dispute window.
        """
        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if locked.payment_status != PaymentStatus.HELD.value:
                raise InvalidStateTransitionError(
                    "Session completion requires held escrow",
                    current=locked.payment_status,
                    entity_id=locked.id,
                )
            if locked.session_ended_at is None:
                locked.session_ended_at = now

            party = self.settle_absence_locked(locked, now, reason="session_completion")
            if party is NoShowParty.STUDENT:
                return SessionOutcome.PARTIALLY_RELEASED
            if party is not None:
                return SessionOutcome.REFUNDED

            completion = locked.completion_percentage
            if completion is not None and Decimal(str(completion)) < settings.min_completion_percentage:
                self.partial_locked(
                    locked,
                    _validate_percentage(completion, "completion_percentage"),
                    now,
                    reason="incomplete_session",
                )
                locked.status = BookingStatus.COMPLETED.value
                return SessionOutcome.PARTIALLY_RELEASED

            locked.status = BookingStatus.COMPLETED.value
            return SessionOutcome.AWAITING_RELEASE

    def refund_percentage_for_cancellation(self, booking: Booking, now: datetime) -> int:
        hours_until = (ensure_utc(booking.start_time) - ensure_utc(now)).total_seconds() / 3600
        for threshold, pct in sorted(settings.cancellation_refund_tiers.items(), reverse=True):
            if hours_until > threshold:
                return int(pct)
        return 0

    @BaseService.measure_operation("escrow.cancel_booking")
    def cancel_booking(
        self,
        booking: Booking,
        cancelled_by: str,
        reason: str,
        *,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Cancel a booking before it starts and settle its escrow.

        Teacher and admin cancellations refund in full. Student
        cancellations follow the tiered refund policy; whatever is not
        refunded is paid to the teacher.
        """
        now = now or utc_now()
        with self.transaction():
            locked = self.lock_booking(booking.id)
            if locked.status in (
                BookingStatus.CANCELLED.value,
                BookingStatus.COMPLETED.value,
                BookingStatus.DISPUTED.value,
            ) or locked.payment_status not in (
                PaymentStatus.PENDING.value,
                PaymentStatus.HELD.value,
            ):
                raise InvalidStateTransitionError(
                    f"A {locked.status} booking cannot be cancelled",
                    current=locked.status,
                    target=BookingStatus.CANCELLED.value,
                    entity_id=locked.id,
                )
            if locked.session_started_at is not None or ensure_utc(now) >= ensure_utc(
                locked.start_time
            ):
                raise InvalidStateTransitionError(
                    "Cannot cancel a session that has already started",
                    current=locked.status,
                    target=BookingStatus.CANCELLED.value,
                    entity_id=locked.id,
                )

            if cancelled_by == locked.student_id:
                refund_pct = self.refund_percentage_for_cancellation(locked, now)
            elif cancelled_by == locked.teacher_id:
                refund_pct = 100
            else:
                actor = self.db.get(User, cancelled_by)
                if actor is None or actor.role != UserRole.ADMIN.value:
                    raise ValidationException(
                        "Only the booking's participants or an admin can cancel it",
                        details={"booking_id": locked.id, "cancelled_by": cancelled_by},
                    )
                refund_pct = 100

            locked.status = BookingStatus.CANCELLED.value
            locked.cancellation_reason = reason
            locked.cancelled_by = cancelled_by
            locked.cancelled_at = now

            settled = locked.payment_status == PaymentStatus.HELD.value
            if settled:
                if refund_pct >= 100:
                    self.refund_locked(locked, now, reason=f"cancelled: {reason}")
                elif refund_pct > 0:
                    self.partial_locked(
                        locked, HUNDRED - refund_pct, now, reason=f"late cancellation: {reason}"
                    )
                else:
                    self.release_locked(locked, now, reason=f"late cancellation: {reason}")

            return {
                "booking_id": locked.id,
                "refund_percentage": refund_pct,
                "payment_status": locked.payment_status,
                "settled": settled,
            }

    @BaseService.measure_operation("escrow.process_eligible_releases")
    def process_eligible_releases(
        self, *, now: Optional[datetime] = None, limit: int = 200
    ) -> ReleaseSweepResults:
        """Release every held booking whose dispute window has elapsed, one at a time."""
        now = now or utc_now()
        cutoff = now - timedelta(hours=settings.dispute_window_hours)
        results: ReleaseSweepResults = {"released": 0, "failed": 0, "errors": []}

        for booking in self.booking_repository.find_release_eligible(cutoff, limit=limit):
            booking_id = booking.id
            try:
                self.release_to_teacher(booking, now=now)
                results["released"] += 1
            except DomainException as exc:
                results["failed"] += 1
                results["errors"].append({"booking_id": booking_id, "error": exc.message})
                self.logger.warning(
                    "Escrow release skipped",
                    extra={"booking_id": booking_id, "error": exc.message, "code": exc.code},
                )
            except Exception as exc:
                results["failed"] += 1
                results["errors"].append({"booking_id": booking_id, "error": str(exc)})
                self.logger.exception(
                    "Escrow release failed", extra={"booking_id": booking_id}
                )

        self.logger.info(
            "Escrow release sweep finished",
            extra={"released": results["released"], "failed": results["failed"]},
        )
        return results
