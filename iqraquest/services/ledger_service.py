"""
Ledger Service for the IqraQuest settlement core.

Owns wallets and the append-only transaction log. Every balance change is
paired with exactly one completed transaction row, so a wallet's balance
can always be recomputed from its log.

Two layers are exposed:

- ``post_credit`` / ``post_debit`` / ``complete_charge_locked`` mutate inside
  the caller's transaction. Escrow and payout services use them so a
  booking or payout status change commits atomically with its money
  movement.
- ``credit`` / ``debit`` / ``complete_pending_charge`` / ... wrap the same
  work in their own transaction for standalone callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConflictException,
    GatewayError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..core.ulid_helper import generate_ulid
from ..events import EventPublisher, WalletCredited
from ..models.user import User
from ..models.wallet import (
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from ..repositories.factory import RepositoryFactory
from .base import BaseService

if TYPE_CHECKING:
    from ..integrations.paystack_client import PaystackClient

PAYSTACK = "paystack"
GATEWAY_FAILED_STATUSES = frozenset({"failed", "abandoned", "reversed"})


class LedgerService(BaseService):
    """Wallet balances and the transaction log."""

    def __init__(
        self,
        db: Session,
        *,
        publisher: Optional[EventPublisher] = None,
        gateway: Optional["PaystackClient"] = None,
    ):
        super().__init__(db)
        self.wallet_repository = RepositoryFactory.create_wallet_repository(db)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_background_job_repository(db)
        )
        self._gateway = gateway

    @property
    def gateway(self) -> "PaystackClient":
        if self._gateway is None:
            from ..integrations.paystack_client import get_paystack_client

            self._gateway = get_paystack_client()
        return self._gateway

    # Wallets

    def get_or_create_wallet(self, user_id: str) -> Wallet:
        wallet = self.wallet_repository.get_by_user_id(user_id)
        if wallet is not None:
            return wallet
        with self.transaction():
            self.wallet_repository.ensure_for_user(user_id, settings.currency)
        wallet = self.wallet_repository.get_by_user_id(user_id)
        if wallet is None:
            raise NotFoundError("Wallet", user_id)
        return wallet

    def lock_wallet(self, user_id: str) -> Wallet:
        """Create the wallet if needed and take its row lock. Caller owns the transaction."""
        self.wallet_repository.ensure_for_user(user_id, settings.currency)
        wallet = self.wallet_repository.get_by_user_id_for_update(user_id)
        if wallet is None:
            raise NotFoundError("Wallet", user_id)
        return wallet

    def get_balance(self, user_id: str) -> int:
        wallet = self.wallet_repository.get_by_user_id(user_id)
        return int(wallet.balance) if wallet else 0

    def can_debit(self, user_id: str, amount: int) -> bool:
        return amount > 0 and self.get_balance(user_id) >= amount

    def recompute_balance(self, wallet_id: str) -> int:
        """Balance derived from the completed transaction log."""
        return self.transaction_repository.sum_completed_for_wallet(wallet_id)

    def balance_is_consistent(self, wallet: Wallet) -> bool:
        return int(wallet.balance) == self.recompute_balance(wallet.id)

    def transaction_history(self, user_id: str, limit: int = 50) -> List[Transaction]:
        return self.transaction_repository.list_for_user(user_id, limit=limit)

    # In-transaction primitives

    def _assert_new_reference(self, reference: str) -> None:
        if self.transaction_repository.find_by_reference(reference) is not None:
            raise ConflictException(
                "Duplicate transaction reference",
                code="DUPLICATE_REFERENCE",
                details={"reference": reference},
            )

    def _post(
        self,
        txn_type: TransactionType,
        user_id: str,
        amount: int,
        *,
        purpose: TransactionPurpose,
        reference: str,
        description: Optional[str],
        metadata: Optional[Dict[str, Any]],
        booking_id: Optional[str],
        payout_id: Optional[str],
    ) -> Transaction:
        if amount <= 0:
            raise ValidationException(
                "Transaction amount must be positive", details={"amount": amount}
            )
        self._assert_new_reference(reference)
        wallet = self.lock_wallet(user_id)

        if txn_type is TransactionType.DEBIT:
            if wallet.balance < amount:
                raise InsufficientFundsError(
                    required=amount, available=int(wallet.balance), wallet_id=wallet.id
                )
            wallet.balance = wallet.balance - amount
        else:
            wallet.balance = wallet.balance + amount

        return self.transaction_repository.create(
            wallet_id=wallet.id,
            user_id=user_id,
            type=txn_type.value,
            purpose=purpose.value,
            amount=amount,
            currency=wallet.currency,
            status=TransactionStatus.COMPLETED.value,
            reference=reference,
            booking_id=booking_id,
            payout_id=payout_id,
            meta={"type": purpose.value, **(metadata or {})},
            description=description,
            completed_at=utc_now(),
        )

    def post_credit(
        self,
        user_id: str,
        amount: int,
        *,
        purpose: TransactionPurpose,
        reference: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        booking_id: Optional[str] = None,
        payout_id: Optional[str] = None,
    ) -> Transaction:
        return self._post(
            TransactionType.CREDIT,
            user_id,
            amount,
            purpose=purpose,
            reference=reference,
            description=description,
            metadata=metadata,
            booking_id=booking_id,
            payout_id=payout_id,
        )

    def post_debit(
        self,
        user_id: str,
        amount: int,
        *,
        purpose: TransactionPurpose,
        reference: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        booking_id: Optional[str] = None,
        payout_id: Optional[str] = None,
    ) -> Transaction:
        return self._post(
            TransactionType.DEBIT,
            user_id,
            amount,
            purpose=purpose,
            reference=reference,
            description=description,
            metadata=metadata,
            booking_id=booking_id,
            payout_id=payout_id,
        )

    def record_pending_charge(
        self,
        user_id: str,
        amount: int,
        *,
        purpose: TransactionPurpose,
        reference: str,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        booking_id: Optional[str] = None,
    ) -> Transaction:
        """Record a gateway charge that has not settled yet. No wallet is touched."""
        if amount <= 0:
            raise ValidationException(
                "Transaction amount must be positive", details={"amount": amount}
            )
        self._assert_new_reference(reference)
        txn_type = (
            TransactionType.CREDIT
            if purpose is TransactionPurpose.WALLET_CREDIT
            else TransactionType.DEBIT
        )
        return self.transaction_repository.create(
            wallet_id=None,
            user_id=user_id,
            type=txn_type.value,
            purpose=purpose.value,
            amount=amount,
            currency=settings.currency,
            status=TransactionStatus.PENDING.value,
            reference=reference,
            payment_gateway=PAYSTACK,
            booking_id=booking_id,
            meta={"type": purpose.value, **(metadata or {})},
            description=description,
        )

    def complete_charge_locked(
        self, reference: str, *, reported_amount: Optional[int] = None
    ) -> Tuple[Optional[Transaction], bool]:
        """
        Settle a pending gateway charge inside the caller's transaction.

        Returns ``(transaction, applied)``. ``applied`` is False when the
        reference is unknown or the transaction was already completed, which
        makes replayed gateway callbacks no-ops.
        """
        txn = self.transaction_repository.find_by_reference_for_update(reference)
        if txn is None:
            self.logger.info("Charge reference not found", extra={"reference": reference})
            return None, False
        if txn.status == TransactionStatus.COMPLETED.value:
            self.logger.info("Charge already completed", extra={"reference": reference})
            return txn, False
        if txn.status == TransactionStatus.FAILED.value:
            raise InvalidStateTransitionError(
                "Cannot complete a failed transaction",
                current=txn.status,
                target=TransactionStatus.COMPLETED.value,
                entity_id=txn.id,
            )

        if reported_amount is not None and int(reported_amount) != int(txn.amount):
            self.logger.warning(
                "Gateway amount differs from recorded charge",
                extra={
                    "reference": reference,
                    "recorded_amount": txn.amount,
                    "reported_amount": reported_amount,
                },
            )
            txn.meta = {**(txn.meta or {}), "reported_amount": int(reported_amount)}

        txn.status = TransactionStatus.COMPLETED.value
        txn.completed_at = utc_now()

        if txn.purpose == TransactionPurpose.WALLET_CREDIT.value:
            wallet = self.lock_wallet(txn.user_id)
            wallet.balance = wallet.balance + txn.amount
            if txn.wallet_id is None:
                txn.wallet_id = wallet.id
            self.publisher.publish(
                WalletCredited(
                    user_id=txn.user_id,
                    wallet_id=wallet.id,
                    amount=int(txn.amount),
                    reference=txn.reference,
                )
            )
        elif txn.purpose == TransactionPurpose.ESCROW_HOLD.value:
            from .escrow_service import EscrowService

            EscrowService(self.db, ledger=self, publisher=self.publisher).confirm_gateway_hold_locked(
                txn
            )

        self.transaction_repository.flush()
        return txn, True

    def fail_charge_locked(self, reference: str, reason: str) -> Optional[Transaction]:
        txn = self.transaction_repository.find_by_reference_for_update(reference)
        if txn is None:
            raise NotFoundError("Transaction", reference)
        if txn.status == TransactionStatus.FAILED.value:
            return txn
        if txn.status == TransactionStatus.COMPLETED.value:
            raise InvalidStateTransitionError(
                "Cannot fail a completed transaction",
                current=txn.status,
                target=TransactionStatus.FAILED.value,
                entity_id=txn.id,
            )
        txn.status = TransactionStatus.FAILED.value
        txn.meta = {**(txn.meta or {}), "failure_reason": reason}
        self.transaction_repository.flush()
        return txn

    # Standalone operations

    @BaseService.measure_operation("ledger.credit")
    def credit(self, user_id: str, amount: int, **kwargs: Any) -> Transaction:
        with self.transaction():
            return self.post_credit(user_id, amount, **kwargs)

    @BaseService.measure_operation("ledger.debit")
    def debit(self, user_id: str, amount: int, **kwargs: Any) -> Transaction:
        with self.transaction():
            return self.post_debit(user_id, amount, **kwargs)

    @BaseService.measure_operation("ledger.complete_pending_charge")
    def complete_pending_charge(
        self, reference: str, *, reported_amount: Optional[int] = None
    ) -> Tuple[Optional[Transaction], bool]:
        with self.transaction():
            return self.complete_charge_locked(reference, reported_amount=reported_amount)

    @BaseService.measure_operation("ledger.fail_pending_charge")
    def fail_pending_charge(self, reference: str, reason: str) -> Optional[Transaction]:
        with self.transaction():
            return self.fail_charge_locked(reference, reason)

    @BaseService.measure_operation("ledger.initialize_wallet_funding")
    def initialize_wallet_funding(self, user_id: str, amount: int) -> Dict[str, Any]:
        """
        Start a wallet top-up through the gateway's hosted checkout.

        The pending credit is committed before the gateway call so the
        ``charge.success`` webhook always finds it. If the gateway refuses
        the charge the pending row is failed.
        """
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        reference = f"WAL-{generate_ulid()}"
        with self.transaction():
            self.record_pending_charge(
                user_id,
                amount,
                purpose=TransactionPurpose.WALLET_CREDIT,
                reference=reference,
                description="Wallet funding",
            )

        try:
            data = self.gateway.initialize_transaction(
                email=user.email,
                amount=amount,
                reference=reference,
                currency=settings.currency,
                metadata={"type": TransactionPurpose.WALLET_CREDIT.value, "user_id": user_id},
                callback_url=settings.paystack_callback_url,
            )
        except GatewayError as exc:
            self.fail_pending_charge(reference, reason=exc.message)
            raise

        return {
            "reference": reference,
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
        }

    @BaseService.measure_operation("ledger.verify_pending_charge")
    def verify_pending_charge(self, reference: str) -> str:
        """
        Ask the gateway for a charge's outcome and converge the local row.

        Returns the local transaction status after reconciliation.
        """
        data = self.gateway.verify_transaction(reference)
        gateway_status = str(data.get("status") or "").lower()

        if gateway_status == "success":
            txn, _ = self.complete_pending_charge(reference, reported_amount=data.get("amount"))
            return txn.status if txn else TransactionStatus.PENDING.value
        if gateway_status in GATEWAY_FAILED_STATUSES:
            txn = self.fail_pending_charge(reference, reason=f"gateway status {gateway_status}")
            return txn.status if txn else TransactionStatus.FAILED.value

        self.logger.info(
            "Charge still pending at gateway",
            extra={"reference": reference, "gateway_status": gateway_status},
        )
        return TransactionStatus.PENDING.value
