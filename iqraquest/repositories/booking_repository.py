"""Booking queries used by escrow settlement and scheduled sweeps."""

from datetime import datetime
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus, PaymentStatus
from .base_repository import BaseRepository


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def find_release_eligible(self, ended_before: datetime, limit: int = 200) -> List[Booking]:
        """
        Held bookings whose session ended before ``ended_before``.

        ``ended_before`` is ``now - dispute window``. Disputed holds carry
        payment_status ``disputed`` and therefore never match.
        """
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.payment_status == PaymentStatus.HELD.value,
                    Booking.end_time <= ended_before,
                    Booking.dispute_raised_at.is_(None),
                    Booking.status.notin_(
                        [BookingStatus.CANCELLED.value, BookingStatus.DISPUTED.value]
                    ),
                )
                .order_by(Booking.end_time.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error finding release-eligible bookings: %s", e)
            raise RepositoryException(f"Failed to find release-eligible bookings: {e}") from e

    def find_unstarted_held(self, started_before: datetime, limit: int = 200) -> List[Booking]:
        """Confirmed, funded bookings that should have started but have no join recorded."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.CONFIRMED.value,
                    Booking.payment_status == PaymentStatus.HELD.value,
                    Booking.session_started_at.is_(None),
                    Booking.start_time <= started_before,
                )
                .order_by(Booking.start_time.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error finding unstarted bookings: %s", e)
            raise RepositoryException(f"Failed to find unstarted bookings: {e}") from e
