"""Repository helpers for the webhook event ledger."""

from __future__ import annotations

from datetime import datetime
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from iqraquest.core.exceptions import RepositoryException
from iqraquest.models.webhook_event import WebhookEvent
from iqraquest.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)

PURGEABLE_STATUSES = ("processed", "ignored")


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        return self.find_one_by(source=source, event_id=event_id)

    def list_events(
        self,
        *,
        source: str | None = None,
        status: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        """Return recent webhook events filtered by criteria."""
        query = self.db.query(WebhookEvent)
        if source:
            query = query.filter(WebhookEvent.source == source)
        if status:
            query = query.filter(WebhookEvent.status == status)
        if event_type:
            query = query.filter(WebhookEvent.event_type == event_type)
        try:
            return query.order_by(WebhookEvent.received_at.desc()).limit(limit).all()
        except SQLAlchemyError as exc:
            logger.error("Failed to list webhook events: %s", exc)
            raise RepositoryException("Failed to list webhook events") from exc

    def summarize_by_status(self) -> dict[str, int]:
        rows = (
            self.db.query(WebhookEvent.status, func.count(WebhookEvent.id))
            .group_by(WebhookEvent.status)
            .all()
        )
        return {status: int(count) for status, count in rows}

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete settled events received before ``cutoff``; failed events are kept."""
        try:
            deleted = (
                self.db.query(WebhookEvent)
                .filter(
                    WebhookEvent.received_at < cutoff,
                    WebhookEvent.status.in_(PURGEABLE_STATUSES),
                )
                .delete(synchronize_session=False)
            )
            return int(deleted or 0)
        except SQLAlchemyError as exc:
            logger.error("Failed to purge webhook events: %s", exc)
            raise RepositoryException("Failed to purge webhook events") from exc
