"""Service for logging inbound gateway webhooks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent
from ..repositories.factory import RepositoryFactory
from .base import BaseService


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookLedgerService(BaseService):
    """Business logic for webhook ledger entries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = RepositoryFactory.create_webhook_event_repository(db)

    def _bump_retry(self, existing: WebhookEvent, now: datetime) -> WebhookEvent:
        existing.retry_count = (existing.retry_count or 0) + 1
        existing.last_retry_at = now
        self.repository.flush()
        return existing

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        event_id: str,
        payload: dict[str, Any],
        reference: str | None = None,
    ) -> WebhookEvent:
        """
        Log a received webhook before processing.

        A gateway retry of the same event updates retry tracking on the
        existing row instead of inserting a new one.
        """
        now = _now_utc()
        existing = self.repository.find_by_source_and_event_id(source, event_id)
        if existing is not None:
            return self._bump_retry(existing, now)

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                reference=reference,
                payload=payload,
                status="received",
                received_at=now,
                retry_count=0,
            )
        except RepositoryException as exc:
            # Another worker inserted the same event first
            if isinstance(exc.__cause__, IntegrityError):
                self.db.rollback()
                existing = self.repository.find_by_source_and_event_id(source, event_id)
                if existing is not None:
                    return self._bump_retry(existing, now)
            raise

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        duration_ms: int | None = None,
        status: str = "processed",
    ) -> WebhookEvent:
        event.status = status
        event.processing_error = None
        event.processed_at = _now_utc()
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self,
        event: WebhookEvent,
        *,
        error: str,
        duration_ms: int | None = None,
    ) -> WebhookEvent:
        event.status = "failed"
        event.processing_error = error
        event.processed_at = _now_utc()
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    def list_events(
        self,
        *,
        source: str | None = None,
        status: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        return self.repository.list_events(
            source=source, status=status, event_type=event_type, limit=limit
        )

    def summarize_by_status(self) -> dict[str, int]:
        return self.repository.summarize_by_status()

    @BaseService.measure_operation("webhook_ledger.purge_expired")
    def purge_expired(self, *, now: datetime | None = None) -> int:
        """Delete settled events older than the retention period."""
        cutoff = (now or _now_utc()) - timedelta(days=settings.webhook_event_retention_days)
        with self.transaction():
            deleted = self.repository.purge_older_than(cutoff)
        self.logger.info("Purged webhook events", extra={"deleted": deleted})
        return deleted
