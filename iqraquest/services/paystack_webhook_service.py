"""
Paystack webhook reconciliation.

Gateway callbacks are the source of truth for charges and transfers. Each
verified event is written to the webhook ledger, routed to the ledger or
payout service, and the ledger row is closed with the outcome. Paystack
retries deliveries, so every handler converges on the same state when it
sees an event twice.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DomainException, InvalidSignatureError, ValidationException
from ..integrations.paystack_client import signature_matches
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.paystack_webhooks import PaystackEventData, PaystackWebhookPayload
from .base import BaseService
from .ledger_service import LedgerService
from .payout_service import PayoutService
from .webhook_ledger_service import WebhookLedgerService

SOURCE = "paystack"

PROCESSED = "processed"
IGNORED = "ignored"
FAILED = "failed"


class PaystackWebhookService(BaseService):
    """Verifies, records and applies Paystack events."""

    def __init__(
        self,
        db: Session,
        *,
        ledger: Optional[LedgerService] = None,
        payouts: Optional[PayoutService] = None,
        webhook_ledger: Optional[WebhookLedgerService] = None,
        secret: Optional[str] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or LedgerService(db)
        self.payouts = payouts or PayoutService(db, ledger=self.ledger, publisher=self.ledger.publisher)
        self.webhook_ledger = webhook_ledger or WebhookLedgerService(db)
        self._secret = secret
        self._handlers: Dict[str, Callable[[PaystackEventData], str]] = {
            "charge.success": self._handle_charge_success,
            "transfer.success": self._handle_transfer_success,
            "transfer.failed": self._handle_transfer_failed,
            "transfer.reversed": self._handle_transfer_failed,
            "dedicatedaccount.assign.success": self._handle_dedicated_account_assigned,
        }

    @property
    def secret(self) -> str:
        if self._secret is not None:
            return self._secret
        return settings.paystack_secret_key.get_secret_value()

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> None:
        if not self.secret:
            self.logger.error("Paystack secret key is not configured; rejecting webhook")
            raise InvalidSignatureError("Webhook signing secret is not configured")
        if not signature:
            raise InvalidSignatureError("Missing x-paystack-signature header")
        if not signature_matches(self.secret, payload, signature):
            raise InvalidSignatureError()

    def parse(self, payload: bytes) -> PaystackWebhookPayload:
        try:
            return PaystackWebhookPayload.model_validate_json(payload)
        except ValidationError as exc:
            raise ValidationException(
                "Malformed webhook payload", details={"errors": exc.error_count()}
            ) from exc

    @BaseService.measure_operation("paystack_webhook.handle_event")
    def handle_event(self, event: PaystackWebhookPayload) -> str:
        """
        Apply one verified event and return its ledger outcome.

        Business-rule rejections are recorded as ``failed`` and acknowledged,
        since a redelivery cannot change the answer. Anything else propagates
        so the endpoint answers 500 and Paystack retries.
        """
        reference = event.data.reference
        with self.transaction():
            record = self.webhook_ledger.log_received(
                source=SOURCE,
                event_type=event.event,
                event_id=event.event_id,
                payload=event.model_dump(mode="json", exclude_none=True),
                reference=reference,
            )

        started = time.monotonic()
        handler = self._handlers.get(event.event)
        try:
            if handler is None:
                self.logger.info(
                    "Unhandled Paystack event type",
                    extra={"event_type": event.event, "reference": reference},
                )
                outcome = IGNORED
            else:
                outcome = handler(event.data)
        except DomainException as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.logger.warning(
                "Paystack event rejected",
                extra={"event_type": event.event, "reference": reference, "error": exc.message},
            )
            with self.transaction():
                self.webhook_ledger.mark_failed(record, error=exc.message, duration_ms=duration_ms)
            prometheus_metrics.record_webhook_event(event.event, FAILED)
            return FAILED
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            with self.transaction():
                self.webhook_ledger.mark_failed(record, error=str(exc), duration_ms=duration_ms)
            prometheus_metrics.record_webhook_event(event.event, "error")
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        with self.transaction():
            self.webhook_ledger.mark_processed(record, duration_ms=duration_ms, status=outcome)
        prometheus_metrics.record_webhook_event(event.event, outcome)
        return outcome

    # Handlers

    def _handle_charge_success(self, data: PaystackEventData) -> str:
        if not data.reference:
            self.logger.warning("charge.success without reference")
            return IGNORED
        txn, applied = self.ledger.complete_pending_charge(
            data.reference, reported_amount=data.amount
        )
        if txn is None:
            return IGNORED
        if applied:
            self.logger.info(
                "Charge settled", extra={"reference": data.reference, "amount": txn.amount}
            )
        return PROCESSED

    def _handle_transfer_success(self, data: PaystackEventData) -> str:
        payout = self.payouts.find_processing_by_reference(data.reference or "")
        if payout is None:
            self.logger.info(
                "No processing payout for transfer.success", extra={"reference": data.reference}
            )
            return IGNORED
        self.payouts.mark_completed(payout, data.model_dump(mode="json", exclude_none=True))
        return PROCESSED

    def _handle_transfer_failed(self, data: PaystackEventData) -> str:
        payout = self.payouts.find_processing_by_reference(data.reference or "")
        if payout is None:
            self.logger.info(
                "No processing payout for failed transfer", extra={"reference": data.reference}
            )
            return IGNORED
        self.payouts.mark_failed(payout, data.model_dump(mode="json", exclude_none=True))
        return PROCESSED

    def _handle_dedicated_account_assigned(self, data: PaystackEventData) -> str:
        self.logger.info("Dedicated account assigned", extra={"reference": data.reference})
        return IGNORED
