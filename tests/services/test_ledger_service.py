from unittest.mock import MagicMock

import pytest

from iqraquest.core.exceptions import (
    ConflictException,
    GatewayError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationException,
)
from iqraquest.models import BackgroundJob, Transaction, Wallet
from iqraquest.models.wallet import TransactionPurpose, TransactionStatus
from iqraquest.services.ledger_service import LedgerService


def _credit(ledger, user, amount, reference):
    return ledger.credit(
        user.id, amount, purpose=TransactionPurpose.WALLET_CREDIT, reference=reference
    )


def test_get_or_create_wallet_is_idempotent(db, student):
    ledger = LedgerService(db)

    first = ledger.get_or_create_wallet(student.id)
    second = ledger.get_or_create_wallet(student.id)

    assert first.id == second.id
    assert first.balance == 0
    assert first.currency == "NGN"
    assert db.query(Wallet).filter(Wallet.user_id == student.id).count() == 1


def test_credit_creates_wallet_and_completed_transaction(db, student):
    ledger = LedgerService(db)

    txn = _credit(ledger, student, 5_000, "REF-1")

    assert txn.status == TransactionStatus.COMPLETED.value
    assert txn.meta["type"] == "wallet_credit"
    assert txn.completed_at is not None
    assert ledger.get_balance(student.id) == 5_000


def test_debit_reduces_balance(db, student):
    ledger = LedgerService(db)
    _credit(ledger, student, 5_000, "REF-1")

    ledger.debit(student.id, 1_500, purpose=TransactionPurpose.ESCROW_HOLD, reference="HOLD-1")

    assert ledger.get_balance(student.id) == 3_500


def test_debit_beyond_balance_raises_and_changes_nothing(db, student):
    ledger = LedgerService(db)
    _credit(ledger, student, 1_000, "REF-1")

    with pytest.raises(InsufficientFundsError) as exc_info:
        ledger.debit(
            student.id, 1_001, purpose=TransactionPurpose.ESCROW_HOLD, reference="HOLD-1"
        )

    assert exc_info.value.details["required"] == 1_001
    assert exc_info.value.details["available"] == 1_000
    assert ledger.get_balance(student.id) == 1_000
    assert db.query(Transaction).filter(Transaction.reference == "HOLD-1").first() is None


def test_duplicate_reference_is_rejected(db, student):
    ledger = LedgerService(db)
    _credit(ledger, student, 1_000, "REF-1")

    with pytest.raises(ConflictException):
        _credit(ledger, student, 1_000, "REF-1")

    assert ledger.get_balance(student.id) == 1_000


@pytest.mark.parametrize("amount", [0, -50])
def test_non_positive_amounts_are_rejected(db, student, amount):
    with pytest.raises(ValidationException):
        _credit(LedgerService(db), student, amount, "REF-X")


def test_balance_matches_transaction_log(db, student):
    ledger = LedgerService(db)
    _credit(ledger, student, 10_000, "REF-1")
    ledger.debit(student.id, 2_500, purpose=TransactionPurpose.ESCROW_HOLD, reference="HOLD-1")
    ledger.credit(
        student.id, 500, purpose=TransactionPurpose.ESCROW_REFUND, reference="REFUND-1"
    )

    wallet = ledger.get_or_create_wallet(student.id)
    assert wallet.balance == 8_000
    assert ledger.recompute_balance(wallet.id) == 8_000
    assert ledger.balance_is_consistent(wallet)


def test_pending_charge_does_not_touch_balance_until_completed(db, student):
    ledger = LedgerService(db)
    with ledger.transaction():
        ledger.record_pending_charge(
            student.id, 7_000, purpose=TransactionPurpose.WALLET_CREDIT, reference="WAL-1"
        )
    assert ledger.get_balance(student.id) == 0

    txn, applied = ledger.complete_pending_charge("WAL-1")

    assert applied is True
    assert txn.status == TransactionStatus.COMPLETED.value
    assert txn.wallet_id is not None
    assert ledger.get_balance(student.id) == 7_000
    jobs = db.query(BackgroundJob).filter(BackgroundJob.type == "event:WalletCredited").all()
    assert len(jobs) == 1
    assert jobs[0].payload["amount"] == 7_000


def test_completing_a_charge_twice_credits_once(db, student):
    ledger = LedgerService(db)
    with ledger.transaction():
        ledger.record_pending_charge(
            student.id, 7_000, purpose=TransactionPurpose.WALLET_CREDIT, reference="WAL-1"
        )

    ledger.complete_pending_charge("WAL-1")
    txn, applied = ledger.complete_pending_charge("WAL-1")

    assert applied is False
    assert txn.status == TransactionStatus.COMPLETED.value
    assert ledger.get_balance(student.id) == 7_000


def test_complete_unknown_reference_is_a_no_op(db):
    txn, applied = LedgerService(db).complete_pending_charge("WAL-missing")

    assert txn is None
    assert applied is False


def test_amount_mismatch_credits_recorded_amount(db, student):
    ledger = LedgerService(db)
    with ledger.transaction():
        ledger.record_pending_charge(
            student.id, 7_000, purpose=TransactionPurpose.WALLET_CREDIT, reference="WAL-1"
        )

    txn, _ = ledger.complete_pending_charge("WAL-1", reported_amount=9_999)

    assert ledger.get_balance(student.id) == 7_000
    assert txn.meta["reported_amount"] == 9_999


def test_failed_charge_cannot_be_completed(db, student):
    ledger = LedgerService(db)
    with ledger.transaction():
        ledger.record_pending_charge(
            student.id, 7_000, purpose=TransactionPurpose.WALLET_CREDIT, reference="WAL-1"
        )
    ledger.fail_pending_charge("WAL-1", reason="abandoned")

    with pytest.raises(InvalidStateTransitionError):
        ledger.complete_pending_charge("WAL-1")
    assert ledger.get_balance(student.id) == 0


def test_fail_unknown_charge_raises_not_found(db):
    with pytest.raises(NotFoundError):
        LedgerService(db).fail_pending_charge("WAL-missing", reason="x")


def test_initialize_wallet_funding_records_pending_charge(db, student):
    gateway = MagicMock()
    gateway.initialize_transaction.return_value = {
        "authorization_url": "https://checkout.paystack.com/abc",
        "access_code": "abc",
    }
    ledger = LedgerService(db, gateway=gateway)

    result = ledger.initialize_wallet_funding(student.id, 5_000)

    assert result["reference"].startswith("WAL-")
    assert result["authorization_url"] == "https://checkout.paystack.com/abc"
    kwargs = gateway.initialize_transaction.call_args.kwargs
    assert kwargs["email"] == student.email
    assert kwargs["amount"] == 5_000
    txn = db.query(Transaction).filter(Transaction.reference == result["reference"]).one()
    assert txn.status == TransactionStatus.PENDING.value
    assert txn.payment_gateway == "paystack"


def test_initialize_wallet_funding_fails_pending_row_on_gateway_error(db, student):
    gateway = MagicMock()
    gateway.initialize_transaction.side_effect = GatewayError("Invalid key", status_code=401)
    ledger = LedgerService(db, gateway=gateway)

    with pytest.raises(GatewayError):
        ledger.initialize_wallet_funding(student.id, 5_000)

    txn = db.query(Transaction).filter(Transaction.user_id == student.id).one()
    assert txn.status == TransactionStatus.FAILED.value
    assert txn.meta["failure_reason"] == "Invalid key"


@pytest.mark.parametrize(
    "gateway_status,expected",
    [("success", "completed"), ("abandoned", "failed"), ("ongoing", "pending")],
)
def test_verify_pending_charge_converges_with_gateway(db, student, gateway_status, expected):
    gateway = MagicMock()
    gateway.verify_transaction.return_value = {"status": gateway_status, "amount": 4_000}
    ledger = LedgerService(db, gateway=gateway)
    with ledger.transaction():
        ledger.record_pending_charge(
            student.id, 4_000, purpose=TransactionPurpose.WALLET_CREDIT, reference="WAL-9"
        )

    assert ledger.verify_pending_charge("WAL-9") == expected
    assert ledger.get_balance(student.id) == (4_000 if expected == "completed" else 0)


def test_can_debit_and_history(db, student, teacher):
    ledger = LedgerService(db)
    _credit(ledger, student, 2_000, "REF-1")
    _credit(ledger, student, 500, "REF-2")
    _credit(ledger, teacher, 700, "REF-3")

    assert ledger.can_debit(student.id, 2_500)
    assert not ledger.can_debit(student.id, 2_501)
    assert not ledger.can_debit(student.id, 0)
    assert {t.reference for t in ledger.transaction_history(student.id)} == {"REF-1", "REF-2"}
    assert len(ledger.transaction_history(student.id, limit=1)) == 1
