"""Event handlers - process domain events from the job outbox."""
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from iqraquest.models.booking import Booking
from iqraquest.services.notification_service import NotificationService, format_amount

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


def _load_booking(db: Session, booking_id: str) -> Optional[Booking]:
    return db.get(Booking, booking_id)


def _participants(booking: Booking, exclude: Optional[str] = None) -> Iterable[str]:
    return [uid for uid in (booking.student_id, booking.teacher_id) if uid != exclude]


def handle_funds_held(payload: Payload, db: Session) -> None:
    NotificationService(db).funds_held(
        payload["student_id"], payload["booking_id"], payload["amount"]
    )


def handle_funds_released(payload: Payload, db: Session) -> None:
    NotificationService(db).funds_released(
        payload["teacher_id"],
        payload["booking_id"],
        payload["teacher_amount"],
        payload["commission"],
    )


def handle_funds_refunded(payload: Payload, db: Session) -> None:
    NotificationService(db).funds_refunded(
        payload["student_id"], payload["booking_id"], payload["amount"], payload["reason"]
    )


def handle_funds_partially_released(payload: Payload, db: Session) -> None:
    NotificationService(db).funds_split(payload)


def handle_dispute_raised(payload: Payload, db: Session) -> None:
    """Tell the other participant a dispute was opened."""
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for dispute notice", payload["booking_id"])
        return

    service = NotificationService(db)
    for user_id in _participants(booking, exclude=payload["raised_by"]):
        service.booking_notice(
            user_id,
            "dispute_raised",
            "A dispute was raised",
            "Payment for this session is on hold while the dispute is reviewed.",
            booking.id,
            data={"reason": payload["reason"]},
        )


def handle_dispute_resolved(payload: Payload, db: Session) -> None:
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for dispute resolution", payload["booking_id"])
        return

    service = NotificationService(db)
    for user_id in _participants(booking):
        service.booking_notice(
            user_id,
            "dispute_resolved",
            "Dispute resolved",
            payload["resolution"],
            booking.id,
            data={"outcome": payload["outcome"]},
        )


def handle_wallet_credited(payload: Payload, db: Session) -> None:
    NotificationService(db).wallet_credited(
        payload["user_id"], payload["amount"], payload["reference"]
    )


def handle_payout_requested(payload: Payload, db: Session) -> None:
    NotificationService(db).payout_update(
        payload["teacher_id"], payload["payout_id"], payload["amount"], "requested"
    )


def handle_payout_status_changed(payload: Payload, db: Session) -> None:
    NotificationService(db).payout_update(
        payload["teacher_id"],
        payload["payout_id"],
        payload["amount"],
        payload["status"],
        reason=payload.get("reason"),
    )


def handle_no_show_warning(payload: Payload, db: Session) -> None:
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for no-show warning", payload["booking_id"])
        return

    service = NotificationService(db)
    for user_id in _participants(booking):
        service.booking_notice(
            user_id,
            "no_show_warning",
            "Your session has started",
            f"The session started {payload['minutes_late']} minutes ago. Join now to avoid "
            "it being recorded as a no-show.",
            booking.id,
        )


def handle_no_show_detected(payload: Payload, db: Session) -> None:
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for no-show notice", payload["booking_id"])
        return

    refunded = booking.amount_refunded or 0
    service = NotificationService(db)
    for user_id in _participants(booking):
        service.booking_notice(
            user_id,
            "no_show_detected",
            "Session marked as no-show",
            f"The session was recorded as a {payload['no_show_by']} no-show. "
            f"{format_amount(refunded)} was refunded to the student.",
            booking.id,
            data={"no_show_by": payload["no_show_by"]},
        )


# Registry of event type -> handler function
EVENT_HANDLERS: Dict[str, Callable[[Payload, Session], None]] = {
    "event:FundsHeld": handle_funds_held,
    "event:FundsReleased": handle_funds_released,
    "event:FundsRefunded": handle_funds_refunded,
    "event:FundsPartiallyReleased": handle_funds_partially_released,
    "event:DisputeRaised": handle_dispute_raised,
    "event:DisputeResolved": handle_dispute_resolved,
    "event:WalletCredited": handle_wallet_credited,
    "event:PayoutRequested": handle_payout_requested,
    "event:PayoutStatusChanged": handle_payout_status_changed,
    "event:NoShowWarning": handle_no_show_warning,
    "event:NoShowDetected": handle_no_show_detected,
}


def process_event(job_type: str, payload: Payload, db: Session) -> bool:
    """
    Process an event job.

    Returns True if handled, False if not an event job.
    """
    if not job_type.startswith("event:"):
        return False

    handler = EVENT_HANDLERS.get(job_type)
    if not handler:
        logger.warning("No handler for event type: %s", job_type)
        return True  # Consumed but unhandled

    handler(payload, db)
    return True
