"""Platform earning queries."""

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.platform_earning import PlatformEarning
from .base_repository import BaseRepository


class PlatformEarningRepository(BaseRepository[PlatformEarning]):
    def __init__(self, db: Session):
        super().__init__(db, PlatformEarning)

    def total(self) -> int:
        return int(self.db.query(func.coalesce(func.sum(PlatformEarning.amount), 0)).scalar() or 0)
