"""Wallet data access with row locking."""

from typing import Iterable, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.ulid_helper import generate_ulid
from ..models.wallet import Wallet
from .base_repository import BaseRepository


class WalletRepository(BaseRepository[Wallet]):
    def __init__(self, db: Session):
        super().__init__(db, Wallet)

    def get_by_user_id(self, user_id: str) -> Optional[Wallet]:
        return self.find_one_by(user_id=user_id)

    def get_by_user_id_for_update(self, user_id: str) -> Optional[Wallet]:
        try:
            return (
                self.db.query(Wallet)
                .filter(Wallet.user_id == user_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error locking wallet for user %s: %s", user_id, e)
            raise RepositoryException(f"Failed to lock wallet: {e}") from e

    def ensure_for_user(self, user_id: str, currency: str) -> None:
        """
        Insert an empty wallet unless one already exists.

        ``ON CONFLICT DO NOTHING`` keeps concurrent first-credit calls from
        tripping the unique constraint on ``user_id`` and aborting the
        surrounding transaction.
        """
        insert = pg_insert if self.dialect_name == "postgresql" else sqlite_insert
        stmt = (
            insert(Wallet)
            .values(id=generate_ulid(), user_id=user_id, balance=0, currency=currency)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        try:
            self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error("Error creating wallet for user %s: %s", user_id, e)
            raise RepositoryException(f"Failed to create wallet: {e}") from e

    def lock_for_users(self, user_ids: Iterable[str]) -> List[Wallet]:
        """Lock several wallets in ascending id order to avoid lock-order deadlocks."""
        try:
            return (
                self.db.query(Wallet)
                .filter(Wallet.user_id.in_(list(user_ids)))
                .order_by(Wallet.id.asc())
                .with_for_update()
                .populate_existing()
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error locking wallets: %s", e)
            raise RepositoryException(f"Failed to lock wallets: {e}") from e
