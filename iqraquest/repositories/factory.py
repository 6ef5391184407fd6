"""
Repository Factory for the IqraQuest settlement core.

Provides centralized creation of repository instances so services share
one construction path and tests can patch a single seam.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session


if TYPE_CHECKING:
    from .background_job_repository import BackgroundJobRepository
    from .booking_repository import BookingRepository
    from .payout_repository import PayoutRepository
    from .platform_earning_repository import PlatformEarningRepository
    from .teacher_profile_repository import TeacherProfileRepository
    from .transaction_repository import TransactionRepository
    from .wallet_repository import WalletRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_wallet_repository(db: Session) -> "WalletRepository":
        from .wallet_repository import WalletRepository

        return WalletRepository(db)

    @staticmethod
    def create_transaction_repository(db: Session) -> "TransactionRepository":
        from .transaction_repository import TransactionRepository

        return TransactionRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> "PayoutRepository":
        from .payout_repository import PayoutRepository

        return PayoutRepository(db)

    @staticmethod
    def create_platform_earning_repository(db: Session) -> "PlatformEarningRepository":
        from .platform_earning_repository import PlatformEarningRepository

        return PlatformEarningRepository(db)

    @staticmethod
    def create_teacher_profile_repository(db: Session) -> "TeacherProfileRepository":
        from .teacher_profile_repository import TeacherProfileRepository

        return TeacherProfileRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)

    @staticmethod
    def create_background_job_repository(db: Session) -> "BackgroundJobRepository":
        from .background_job_repository import BackgroundJobRepository

        return BackgroundJobRepository(db)
