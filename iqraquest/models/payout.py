# iqraquest/models/payout.py
"""Teacher payout model."""

from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class PayoutStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Payout(Base):
    """A withdrawal from a teacher wallet to their bank via a gateway transfer."""

    __tablename__ = "payouts"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    teacher_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False, comment="Amount in minor units")
    currency = Column(String(3), nullable=False, default="NGN")
    status = Column(String(20), nullable=False, default=PayoutStatus.PROCESSING.value)
    reference = Column(String(100), nullable=False, unique=True)
    transfer_code = Column(String(100), nullable=True)
    gateway_response = Column(JSON, nullable=True)
    is_automatic = Column(Boolean, nullable=False, default=False)
    requested_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    teacher = relationship("User")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payouts_amount_positive"),
        CheckConstraint(
            "status IN ('processing', 'completed', 'failed')", name="ck_payouts_status"
        ),
        Index("ix_payouts_teacher_status", "teacher_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payout {self.reference} {self.amount} {self.status}>"
