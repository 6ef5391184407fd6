"""
No-show detection for funded sessions that never started.

Runs every few minutes. A booking late by the warning delay gets one
reminder; a booking late past the grace period is settled from its
attendance flags.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DomainException
from ..core.timezone_utils import utc_now
from ..events import EventPublisher, NoShowDetected, NoShowWarning
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .escrow_service import EscrowService


class NoShowResults(TypedDict):
    warned: int
    processed: int
    failed: int
    errors: List[str]


class NoShowService(BaseService):
    def __init__(self, db: Session, *, escrow: Optional[EscrowService] = None):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.escrow = escrow or EscrowService(db)
        self.publisher: EventPublisher = self.escrow.publisher

    def _is_still_unstarted(self, booking: Booking) -> bool:
        return (
            booking.status == BookingStatus.CONFIRMED.value
            and booking.payment_status == PaymentStatus.HELD.value
            and booking.session_started_at is None
        )

    def _warn(self, booking: Booking, now: datetime) -> bool:
        with self.transaction():
            locked = self.escrow.lock_booking(booking.id)
            if not self._is_still_unstarted(locked) or locked.no_show_warning_sent_at is not None:
                return False
            locked.no_show_warning_sent_at = now
            self.publisher.publish(
                NoShowWarning(booking_id=locked.id, minutes_late=int(locked.minutes_late(now)))
            )
            return True

    def _process(self, booking: Booking, now: datetime) -> bool:
        with self.transaction():
            locked = self.escrow.lock_booking(booking.id)
            if not self._is_still_unstarted(locked):
                return False
            party = self.escrow.settle_absence_locked(locked, now, reason="no_show")
            if party is None:
                self.logger.warning(
                    "Both parties marked present but session never started",
                    extra={"booking_id": locked.id},
                )
                return False
            prometheus_metrics.record_escrow_transition("no_show")
            self.publisher.publish(
                NoShowDetected(booking_id=locked.id, no_show_by=party.value, detected_at=now)
            )
            self.logger.info(
                "No-show processed", extra={"booking_id": locked.id, "no_show_by": party.value}
            )
            return True

    @BaseService.measure_operation("no_show.detect")
    def detect(self, *, now: Optional[datetime] = None, limit: int = 200) -> NoShowResults:
        now = now or utc_now()
        results: NoShowResults = {"warned": 0, "processed": 0, "failed": 0, "errors": []}
        cutoff = now - timedelta(minutes=settings.no_show_warning_minutes)

        for booking in self.booking_repository.find_unstarted_held(cutoff, limit=limit):
            booking_id = booking.id
            try:
                if booking.minutes_late(now) >= settings.no_show_grace_minutes:
                    if self._process(booking, now):
                        results["processed"] += 1
                elif booking.no_show_warning_sent_at is None:
                    if self._warn(booking, now):
                        results["warned"] += 1
            except DomainException as exc:
                results["failed"] += 1
                results["errors"].append(booking_id)
                self.logger.warning(
                    "No-show handling failed",
                    extra={"booking_id": booking_id, "error": exc.message},
                )
            except Exception:
                results["failed"] += 1
                results["errors"].append(booking_id)
                self.logger.exception("No-show handling failed", extra={"booking_id": booking_id})

        return results
