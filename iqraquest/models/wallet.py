# iqraquest/models/wallet.py
"""
Wallet ledger models.

A wallet's balance is a cached projection of its transaction log: it always
equals completed credits minus completed debits linked to the wallet.
Transactions are append-only; once completed only ``wallet_id`` may be
backfilled.
"""

from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionPurpose(str, Enum):
    """Tag recorded on every transaction (also mirrored into metadata['type'])."""

    WALLET_CREDIT = "wallet_credit"
    ESCROW_HOLD = "escrow_hold"
    ESCROW_RELEASE = "escrow_release"
    ESCROW_REFUND = "escrow_refund"
    ESCROW_PARTIAL_RELEASE = "escrow_partial_release"
    ESCROW_PARTIAL_REFUND = "escrow_partial_refund"
    PAYOUT = "payout"
    PAYOUT_REFUND = "payout_refund"


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    balance = Column(Integer, nullable=False, default=0, comment="Balance in minor units")
    currency = Column(String(3), nullable=False, default="NGN")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="wallet")
    transactions = relationship("Transaction", back_populates="wallet", lazy="dynamic")

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),)

    def __repr__(self) -> str:
        return f"<Wallet {self.id} user={self.user_id} balance={self.balance}>"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    wallet_id = Column(String(26), ForeignKey("wallets.id"), nullable=True, index=True)
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    purpose = Column(String(40), nullable=False)
    amount = Column(Integer, nullable=False, comment="Amount in minor units")
    currency = Column(String(3), nullable=False, default="NGN")
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    reference = Column(
        String(100), nullable=False, unique=True, comment="Idempotency key / gateway reference"
    )
    payment_gateway = Column(String(30), nullable=True)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=True, index=True)
    payout_id = Column(String(26), ForeignKey("payouts.id"), nullable=True, index=True)
    meta = Column("metadata", JSON, nullable=True)
    description = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("type IN ('credit', 'debit')", name="ck_transactions_type"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_transactions_status"
        ),
        Index("ix_transactions_booking_purpose", "booking_id", "purpose"),
        Index("ix_transactions_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.reference} {self.type} {self.amount} {self.status}>"
