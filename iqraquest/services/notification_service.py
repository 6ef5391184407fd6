"""
In-app notifications for settlement events.

Notifications are written to the ``notifications`` inbox. A Redis dedup
key suppresses the same notice being written twice when an outbox event is
redelivered after a worker crash. Keys claimed inside a transaction that
rolls back are released again so the retry can deliver the notice.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..core import dedup
from ..core.config import settings
from ..models.notification import Notification
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService

logger = logging.getLogger(__name__)

PENDING_CLAIMS_KEY = "notification_dedup_claims"


@event.listens_for(Session, "after_commit")
def _keep_dedup_claims(session: Session) -> None:
    session.info.pop(PENDING_CLAIMS_KEY, None)


@event.listens_for(Session, "after_rollback")
def _release_dedup_claims(session: Session) -> None:
    for key in session.info.pop(PENDING_CLAIMS_KEY, []):
        dedup.forget(key)


def format_amount(minor_units: int, currency: Optional[str] = None) -> str:
    """Render kobo as a display amount, e.g. ``NGN 1,800.00``."""
    major = (Decimal(int(minor_units)) / Decimal(100)).quantize(Decimal("0.01"))
    return f"{currency or settings.currency} {major:,}"


class NotificationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    @BaseService.measure_operation("notification.notify")
    def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        body: str,
        *,
        data: Optional[Dict[str, Any]] = None,
        dedup_key: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Write one inbox entry. Returns None when the dedup key was already claimed.

        The caller owns the transaction.
        """
        if dedup_key:
            key = f"{notification_type}:{user_id}:{dedup_key}"
            if not dedup.claim(key):
                prometheus_metrics.record_notification(notification_type, "deduplicated")
                self.logger.debug(
                    "Duplicate notification suppressed",
                    extra={"user_id": user_id, "type": notification_type, "dedup_key": dedup_key},
                )
                return None
            self.db.info.setdefault(PENDING_CLAIMS_KEY, []).append(key)

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            body=body,
            data=data or {},
        )
        self.db.add(notification)
        self.db.flush()
        prometheus_metrics.record_notification(notification_type, "created")
        return notification

    # Settlement notices

    def funds_held(self, student_id: str, booking_id: str, amount: int) -> Optional[Notification]:
        return self.notify(
            student_id,
            "escrow_funds_held",
            "Payment secured",
            f"{format_amount(amount)} is held in escrow until your session is complete.",
            data={"booking_id": booking_id, "amount": amount},
            dedup_key=booking_id,
        )

    def funds_released(
        self, teacher_id: str, booking_id: str, teacher_amount: int, commission: int
    ) -> Optional[Notification]:
        return self.notify(
            teacher_id,
            "escrow_funds_released",
            "Payment received",
            f"{format_amount(teacher_amount)} has been added to your wallet.",
            data={"booking_id": booking_id, "amount": teacher_amount, "commission": commission},
            dedup_key=booking_id,
        )

    def funds_refunded(
        self, student_id: str, booking_id: str, amount: int, reason: str
    ) -> Optional[Notification]:
        return self.notify(
            student_id,
            "escrow_funds_refunded",
            "Refund issued",
            f"{format_amount(amount)} has been refunded to your wallet.",
            data={"booking_id": booking_id, "amount": amount, "reason": reason},
            dedup_key=booking_id,
        )

    def funds_split(self, payload: Dict[str, Any]) -> None:
        booking_id = payload["booking_id"]
        if payload["teacher_amount"] > 0:
            self.notify(
                payload["teacher_id"],
                "escrow_partial_release",
                "Partial payment received",
                f"{format_amount(payload['teacher_amount'])} has been added to your wallet "
                f"({payload['teacher_percentage']}% of the session).",
                data=payload,
                dedup_key=booking_id,
            )
        if payload["refund_amount"] > 0:
            self.notify(
                payload["student_id"],
                "escrow_partial_refund",
                "Partial refund issued",
                f"{format_amount(payload['refund_amount'])} has been refunded to your wallet.",
                data=payload,
                dedup_key=booking_id,
            )

    def booking_notice(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        body: str,
        booking_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        return self.notify(
            user_id,
            notification_type,
            title,
            body,
            data={"booking_id": booking_id, **(data or {})},
            dedup_key=booking_id,
        )

    def wallet_credited(self, user_id: str, amount: int, reference: str) -> Optional[Notification]:
        return self.notify(
            user_id,
            "wallet_credited",
            "Wallet funded",
            f"{format_amount(amount)} has been added to your wallet.",
            data={"amount": amount, "reference": reference},
            dedup_key=reference,
        )

    def payout_update(
        self, teacher_id: str, payout_id: str, amount: int, status: str, reason: Optional[str] = None
    ) -> Optional[Notification]:
        if status == "completed":
            title, body = "Payout sent", f"{format_amount(amount)} has been sent to your bank."
        elif status == "failed":
            title = "Payout failed"
            body = f"Your payout of {format_amount(amount)} failed and was returned to your wallet."
            if reason:
                body = f"{body} Reason: {reason}"
        else:
            title, body = "Payout requested", f"Your payout of {format_amount(amount)} is processing."
        return self.notify(
            teacher_id,
            f"payout_{status}",
            title,
            body,
            data={"payout_id": payout_id, "amount": amount, "status": status},
            dedup_key=payout_id,
        )
