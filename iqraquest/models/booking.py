# iqraquest/models/booking.py
"""
Booking model for the IqraQuest platform.

Only settlement-relevant columns are modelled: the session window, the
price and commission snapshot, escrow bookkeeping, attendance and dispute
tracking. ``commission_rate`` is captured when the booking is created and
never re-read from configuration afterwards.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.config import settings
from ..core.timezone_utils import ensure_utc
from ..database import Base


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    """Escrow lifecycle for the booking's funds."""

    PENDING = "pending"
    HELD = "held"
    DISPUTED = "disputed"  # held, but blocked from automatic release
    RELEASED = "released"
    REFUNDED = "refunded"
    PARTIALLY_RELEASED = "partially_released"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.RELEASED.value,
        PaymentStatus.REFUNDED.value,
        PaymentStatus.PARTIALLY_RELEASED.value,
    }
)


class NoShowParty(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"
    BOTH = "both"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    teacher_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    subject = Column(String(255), nullable=False)

    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False)

    status = Column(
        String(20), nullable=False, default=BookingStatus.AWAITING_PAYMENT.value, index=True
    )
    payment_status = Column(
        String(30), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    total_price = Column(Integer, nullable=False, comment="Price in minor units")
    currency = Column(String(3), nullable=False, default="NGN")
    commission_rate = Column(
        Numeric(5, 2),
        nullable=False,
        default=lambda: settings.default_commission_rate,
        comment="Platform commission percentage at booking time",
    )

    # Escrow bookkeeping
    funds_held_at = Column(DateTime(timezone=True), nullable=True)
    funds_released_at = Column(DateTime(timezone=True), nullable=True)
    funds_refunded_at = Column(DateTime(timezone=True), nullable=True)
    amount_released = Column(Integer, nullable=True)
    amount_refunded = Column(Integer, nullable=True)

    # Attendance
    session_started_at = Column(DateTime(timezone=True), nullable=True)
    session_ended_at = Column(DateTime(timezone=True), nullable=True)
    teacher_attended = Column(Boolean, nullable=False, default=False)
    student_attended = Column(Boolean, nullable=False, default=False)
    completion_percentage = Column(Numeric(5, 2), nullable=True)
    no_show_warning_sent_at = Column(DateTime(timezone=True), nullable=True)
    no_show_by = Column(String(10), nullable=True)

    # Disputes
    dispute_reason = Column(Text, nullable=True)
    dispute_raised_at = Column(DateTime(timezone=True), nullable=True)
    dispute_raised_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    dispute_resolved_at = Column(DateTime(timezone=True), nullable=True)
    dispute_resolution = Column(Text, nullable=True)
    dispute_resolved_by = Column(String(26), ForeignKey("users.id"), nullable=True)

    # Cancellation
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    student = relationship("User", foreign_keys=[student_id])
    teacher = relationship("User", foreign_keys=[teacher_id])

    __table_args__ = (
        CheckConstraint("total_price > 0", name="ck_bookings_total_price_positive"),
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100", name="ck_bookings_commission_rate"
        ),
        Index("ix_bookings_payment_status_end_time", "payment_status", "end_time"),
    )

    @property
    def rate(self) -> Decimal:
        return Decimal(str(self.commission_rate))

    @property
    def has_open_dispute(self) -> bool:
        return self.dispute_raised_at is not None and self.dispute_resolved_at is None

    def dispute_window_closes_at(self, window_hours: int) -> datetime:
        return ensure_utc(self.end_time) + timedelta(hours=window_hours)

    def minutes_late(self, now: datetime) -> float:
        return (ensure_utc(now) - ensure_utc(self.start_time)).total_seconds() / 60

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.status}/{self.payment_status}>"
