"""Teacher payout preference queries."""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.user import TeacherProfile
from .base_repository import BaseRepository


class TeacherProfileRepository(BaseRepository[TeacherProfile]):
    def __init__(self, db: Session):
        super().__init__(db, TeacherProfile)

    def get_by_user_id(self, user_id: str) -> Optional[TeacherProfile]:
        return self.find_one_by(user_id=user_id)

    def list_automatic_payout_enabled(self) -> List[TeacherProfile]:
        return (
            self.db.query(TeacherProfile)
            .filter(TeacherProfile.automatic_payouts.is_(True))
            .order_by(TeacherProfile.user_id.asc())
            .all()
        )
