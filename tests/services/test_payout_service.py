from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from iqraquest.core.exceptions import (
    BelowMinimumPayoutError,
    GatewayError,
    InsufficientFundsError,
    InvalidStateTransitionError,
)
from iqraquest.models import BackgroundJob, Payout, Transaction
from iqraquest.models.payout import PayoutStatus
from iqraquest.models.wallet import TransactionPurpose
from iqraquest.services.ledger_service import LedgerService
from iqraquest.services.payout_service import PayoutService, payout_reference


@pytest.fixture
def gateway():
    client = MagicMock()
    client.initiate_transfer.return_value = {
        "transfer_code": "TRF_abc123",
        "status": "pending",
    }
    return client


@pytest.fixture
def payouts(db, gateway):
    return PayoutService(db, gateway=gateway)


def _balance(db, user) -> int:
    return LedgerService(db).get_balance(user.id)


def _refund_count(db, payout_id: str) -> int:
    return (
        db.query(Transaction)
        .filter(
            Transaction.payout_id == payout_id,
            Transaction.purpose == TransactionPurpose.PAYOUT_REFUND.value,
        )
        .count()
    )


class TestRequestPayout:
    def test_request_debits_wallet_and_opens_payout(self, db, payouts, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)

        payout = payouts.request_payout(teacher.id, 1_500_000)

        assert payout.status == PayoutStatus.PROCESSING.value
        assert payout.reference == payout_reference(payout.id)
        assert payout.is_automatic is False
        assert _balance(db, teacher) == 500_000
        debit = (
            db.query(Transaction).filter(Transaction.reference == f"payout:{payout.id}").one()
        )
        assert debit.type == "debit"
        assert debit.payout_id == payout.id
        assert teacher_profile.last_payout_requested_at is not None
        assert db.query(BackgroundJob).filter(BackgroundJob.type == "event:PayoutRequested").count() == 1

    def test_below_minimum_is_rejected(self, db, payouts, teacher, fund_wallet):
        fund_wallet(teacher, 2_000_000)

        with pytest.raises(BelowMinimumPayoutError):
            payouts.request_payout(teacher.id, 999_999)

        assert db.query(Payout).count() == 0
        assert _balance(db, teacher) == 2_000_000

    def test_insufficient_balance_is_rejected(self, db, payouts, teacher, fund_wallet):
        fund_wallet(teacher, 1_200_000)

        with pytest.raises(InsufficientFundsError):
            payouts.request_payout(teacher.id, 1_500_000)

        assert db.query(Payout).count() == 0
        assert _balance(db, teacher) == 1_200_000


class TestTransferSubmission:
    def test_submit_records_transfer_code(self, db, payouts, gateway, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)

        result = payouts.submit_transfer(payout.id)

        assert result.status == PayoutStatus.PROCESSING.value
        assert result.transfer_code == "TRF_abc123"
        assert result.processed_at is not None
        kwargs = gateway.initiate_transfer.call_args.kwargs
        assert kwargs["recipient"] == "RCP_test123"
        assert kwargs["reference"] == payout.reference
        assert kwargs["amount"] == 1_500_000

    def test_submit_is_not_repeated(self, payouts, gateway, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)

        payouts.submit_transfer(payout.id)
        payouts.submit_transfer(payout.id)

        assert gateway.initiate_transfer.call_count == 1

    def test_gateway_refusal_fails_and_refunds(self, db, payouts, gateway, teacher, teacher_profile, fund_wallet):
        gateway.initiate_transfer.side_effect = GatewayError(
            "Insufficient Paystack balance", status_code=400
        )
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)

        result = payouts.submit_transfer(payout.id)

        assert result.status == PayoutStatus.FAILED.value
        assert result.gateway_response["message"] == "Insufficient Paystack balance"
        assert _balance(db, teacher) == 2_000_000
        assert _refund_count(db, payout.id) == 1

    def test_missing_recipient_fails_payout(self, db, payouts, gateway, teacher, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)

        result = payouts.submit_transfer(payout.id)

        assert result.status == PayoutStatus.FAILED.value
        gateway.initiate_transfer.assert_not_called()
        assert _balance(db, teacher) == 2_000_000


class TestPayoutOutcome:
    def test_mark_completed(self, db, payouts, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)

        payouts.mark_completed(payout, {"status": "success"})

        assert payout.status == PayoutStatus.COMPLETED.value
        assert payout.completed_at is not None
        assert _balance(db, teacher) == 500_000

    def test_mark_failed_twice_refunds_once(self, db, payouts, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)

        payouts.mark_failed(payout, {"reason": "Account number invalid"})
        payouts.mark_failed(payout, {"reason": "Account number invalid"})

        assert payout.status == PayoutStatus.FAILED.value
        assert _balance(db, teacher) == 2_000_000
        assert _refund_count(db, payout.id) == 1
        status_events = (
            db.query(BackgroundJob).filter(BackgroundJob.type == "event:PayoutStatusChanged").all()
        )
        assert len(status_events) == 1
        assert status_events[0].payload["reason"] == "Account number invalid"

    def test_completed_payout_cannot_fail(self, db, payouts, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)
        payouts.mark_completed(payout)

        with pytest.raises(InvalidStateTransitionError):
            payouts.mark_failed(payout)

        assert _balance(db, teacher) == 500_000

    def test_failed_payout_cannot_complete(self, payouts, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 2_000_000)
        payout = payouts.request_payout(teacher.id, 1_500_000)
        payouts.mark_failed(payout)

        with pytest.raises(InvalidStateTransitionError):
            payouts.mark_completed(payout)


class TestAutomaticPayouts:
    def test_eligible_teacher_is_paid_out(self, db, payouts, gateway, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 6_000_000)

        results = payouts.process_automatic_payouts()

        assert results == {"processed": 1, "skipped": 0, "failed": 0}
        payout = db.query(Payout).one()
        assert payout.is_automatic is True
        assert payout.amount == 6_000_000
        assert payout.transfer_code == "TRF_abc123"
        assert _balance(db, teacher) == 0

    def test_below_threshold_is_skipped(self, db, payouts, teacher, teacher_profile, fund_wallet):
        fund_wallet(teacher, 4_999_999)

        results = payouts.process_automatic_payouts()

        assert results == {"processed": 0, "skipped": 1, "failed": 0}
        assert db.query(Payout).count() == 0

    def test_unverified_payout_method_is_skipped(self, db, payouts, teacher, teacher_profile, fund_wallet):
        teacher_profile.payout_method_verified = False
        db.commit()
        fund_wallet(teacher, 6_000_000)

        results = payouts.process_automatic_payouts()

        assert results["skipped"] == 1
        assert db.query(Payout).count() == 0

    def test_recent_payout_triggers_cooldown(self, db, payouts, teacher, teacher_profile, fund_wallet):
        teacher_profile.last_payout_requested_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.commit()
        fund_wallet(teacher, 6_000_000)

        results = payouts.process_automatic_payouts()

        assert results["skipped"] == 1

    def test_gateway_failure_counts_as_failed(self, db, payouts, gateway, teacher, teacher_profile, fund_wallet):
        gateway.initiate_transfer.side_effect = GatewayError("Transfer limit reached")
        fund_wallet(teacher, 6_000_000)

        results = payouts.process_automatic_payouts()

        assert results == {"processed": 0, "skipped": 0, "failed": 1}
        assert _balance(db, teacher) == 6_000_000
