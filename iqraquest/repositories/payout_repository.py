"""Payout data access."""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payout import Payout, PayoutStatus
from .base_repository import BaseRepository


class PayoutRepository(BaseRepository[Payout]):
    def __init__(self, db: Session):
        super().__init__(db, Payout)

    def find_by_reference_for_update(
        self, reference: str, status: Optional[PayoutStatus] = None
    ) -> Optional[Payout]:
        try:
            query = self.db.query(Payout).filter(Payout.reference == reference)
            if status is not None:
                query = query.filter(Payout.status == status.value)
            return query.with_for_update().populate_existing().first()
        except SQLAlchemyError as e:
            self.logger.error("Error locking payout %s: %s", reference, e)
            raise RepositoryException(f"Failed to lock payout: {e}") from e

    def has_processing(self, teacher_id: str) -> bool:
        return self.exists(teacher_id=teacher_id, status=PayoutStatus.PROCESSING.value)
