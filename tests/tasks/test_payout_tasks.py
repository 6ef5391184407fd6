"""
Tests for payout Celery tasks.
"""

from unittest.mock import MagicMock, patch

from iqraquest.core.exceptions import NotFoundError
from iqraquest.tasks.payout_tasks import process_automatic_payouts, submit_payout_transfer


class TestProcessAutomaticPayouts:
    @patch("iqraquest.tasks.payout_tasks.PayoutService")
    @patch("iqraquest.database.SessionLocal")
    def test_reports_batch_counts(self, mock_session_local, mock_payout_service):
        mock_db = MagicMock()
        mock_session_local.return_value = mock_db
        mock_payout_service.return_value.process_automatic_payouts.return_value = {
            "processed": 4,
            "skipped": 7,
            "failed": 1,
        }

        result = process_automatic_payouts()

        assert result == {"skipped": False, "processed": 4, "failed": 1, "not_eligible": 7}
        mock_db.close.assert_called_once()

    @patch("iqraquest.tasks.payout_tasks.job_lock")
    @patch("iqraquest.tasks.payout_tasks.PayoutService")
    def test_skips_when_locked(self, mock_payout_service, mock_job_lock):
        mock_job_lock.return_value.__enter__.return_value = False

        result = process_automatic_payouts()

        assert result["skipped"] is True
        mock_payout_service.assert_not_called()


class TestSubmitPayoutTransfer:
    @patch("iqraquest.tasks.payout_tasks.PayoutService")
    @patch("iqraquest.database.SessionLocal")
    def test_returns_transfer_details(self, mock_session_local, mock_payout_service):
        mock_session_local.return_value = MagicMock()
        payout = MagicMock(id="01PAYOUT", status="processing", transfer_code="TRF_1")
        mock_payout_service.return_value.submit_transfer.return_value = payout

        result = submit_payout_transfer("01PAYOUT")

        assert result == {"status": "processing", "payout_id": "01PAYOUT", "transfer_code": "TRF_1"}
        mock_payout_service.return_value.submit_transfer.assert_called_once_with("01PAYOUT")

    @patch("iqraquest.tasks.payout_tasks.PayoutService")
    @patch("iqraquest.database.SessionLocal")
    def test_unknown_payout(self, mock_session_local, mock_payout_service):
        mock_db = MagicMock()
        mock_session_local.return_value = mock_db
        mock_payout_service.return_value.submit_transfer.side_effect = NotFoundError(
            "Payout", "01MISSING"
        )

        result = submit_payout_transfer("01MISSING")

        assert result == {"status": "error", "reason": "payout_not_found"}
        mock_db.close.assert_called_once()
