"""
Database models for the IqraQuest settlement core.

- Users and teacher payout preferences
- Wallets and the append-only transaction log
- Bookings with escrow, attendance and dispute tracking
- Payouts and platform earnings
- Webhook ledger, background job outbox and in-app notifications
"""

from .background_job import BackgroundJob
from .booking import Booking, BookingStatus, NoShowParty, PaymentStatus
from .notification import Notification
from .payout import Payout, PayoutStatus
from .platform_earning import PlatformEarning
from .user import TeacherProfile, User, UserRole
from .wallet import (
    Transaction,
    TransactionPurpose,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from .webhook_event import WebhookEvent

__all__ = [
    "BackgroundJob",
    "Booking",
    "BookingStatus",
    "NoShowParty",
    "Notification",
    "PaymentStatus",
    "Payout",
    "PayoutStatus",
    "PlatformEarning",
    "TeacherProfile",
    "Transaction",
    "TransactionPurpose",
    "TransactionStatus",
    "TransactionType",
    "User",
    "UserRole",
    "Wallet",
    "WebhookEvent",
]
