# iqraquest/models/platform_earning.py
"""Append-only record of the commission the platform took on a booking."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class PlatformEarning(Base):
    __tablename__ = "platform_earnings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, unique=True)
    transaction_id = Column(String(26), ForeignKey("transactions.id"), nullable=True)
    amount = Column(Integer, nullable=False, comment="Commission in minor units")
    commission_rate = Column(Numeric(5, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
