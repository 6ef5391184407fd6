"""Transaction log queries."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.wallet import Transaction, TransactionPurpose, TransactionStatus, TransactionType
from .base_repository import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    def __init__(self, db: Session):
        super().__init__(db, Transaction)

    def find_by_reference(self, reference: str) -> Optional[Transaction]:
        return self.find_one_by(reference=reference)

    def find_by_reference_for_update(self, reference: str) -> Optional[Transaction]:
        try:
            return (
                self.db.query(Transaction)
                .filter(Transaction.reference == reference)
                .with_for_update()
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error locking transaction %s: %s", reference, e)
            raise RepositoryException(f"Failed to lock transaction: {e}") from e

    def find_active_hold(self, booking_id: str) -> Optional[Transaction]:
        """Pending or completed escrow hold for a booking, if any."""
        try:
            return (
                self.db.query(Transaction)
                .filter(
                    Transaction.booking_id == booking_id,
                    Transaction.purpose == TransactionPurpose.ESCROW_HOLD.value,
                    Transaction.status.in_(
                        [TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value]
                    ),
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading hold for booking %s: %s", booking_id, e)
            raise RepositoryException(f"Failed to load escrow hold: {e}") from e

    def find_for_payout(self, payout_id: str, purpose: TransactionPurpose) -> Optional[Transaction]:
        return self.find_one_by(payout_id=payout_id, purpose=purpose.value)

    def list_for_user(self, user_id: str, limit: int = 50) -> List[Transaction]:
        try:
            return (
                self.db.query(Transaction)
                .filter(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing transactions for %s: %s", user_id, e)
            raise RepositoryException(f"Failed to list transactions: {e}") from e

    def sum_completed_for_wallet(self, wallet_id: str) -> int:
        """Completed credits minus completed debits linked to the wallet."""
        signed = case(
            (Transaction.type == TransactionType.CREDIT.value, Transaction.amount),
            else_=-Transaction.amount,
        )
        try:
            total = (
                self.db.query(func.coalesce(func.sum(signed), 0))
                .filter(
                    Transaction.wallet_id == wallet_id,
                    Transaction.status == TransactionStatus.COMPLETED.value,
                )
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as e:
            self.logger.error("Error summing wallet %s: %s", wallet_id, e)
            raise RepositoryException(f"Failed to sum wallet transactions: {e}") from e

    def list_stale_pending_charges(self, created_before: datetime, limit: int = 100) -> List[Transaction]:
        """Gateway-backed charges still pending after ``created_before``."""
        try:
            return (
                self.db.query(Transaction)
                .filter(
                    Transaction.status == TransactionStatus.PENDING.value,
                    Transaction.payment_gateway.isnot(None),
                    Transaction.created_at < created_before,
                )
                .order_by(Transaction.created_at.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing stale pending charges: %s", e)
            raise RepositoryException(f"Failed to list pending charges: {e}") from e
