"""Repository for persisted background jobs (the domain event outbox)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, List, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..models.background_job import BackgroundJob

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackgroundJobRepository:
    """Data access helpers for background_jobs table."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logger

    def enqueue(
        self,
        *,
        type: str,
        payload: dict[str, Any],
        available_at: datetime | None = None,
    ) -> str:
        """Persist a new job ready for processing."""

        try:
            job_id = str(ulid.ULID())
            job = BackgroundJob(
                id=job_id,
                type=type,
                payload=payload,
                status="queued",
                attempts=0,
                available_at=available_at or _utcnow(),
            )
            self.db.add(job)
            self.db.flush()
            return job_id
        except SQLAlchemyError as exc:
            self.logger.error("Failed to enqueue job %s: %s", type, str(exc))
            raise RepositoryException("Failed to enqueue background job") from exc

    def fetch_due(self, *, limit: int = 50) -> List[BackgroundJob]:
        """Return queued jobs that are ready to run, locking them against other drainers."""

        try:
            query = (
                self.db.query(BackgroundJob)
                .filter(
                    BackgroundJob.status == "queued",
                    BackgroundJob.available_at <= _utcnow(),
                )
                .order_by(BackgroundJob.available_at.asc())
                .limit(limit)
            )
            bind = self.db.get_bind()
            if bind is not None and bind.dialect.name == "postgresql":
                query = query.with_for_update(skip_locked=True)
            return cast(List[BackgroundJob], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to fetch due jobs: %s", str(exc))
            raise RepositoryException("Failed to fetch background jobs") from exc

    def mark_succeeded(self, job_id: str) -> None:
        self._set_status(job_id, "succeeded")

    def _set_status(self, job_id: str, status: str) -> None:
        try:
            self.db.query(BackgroundJob).filter(BackgroundJob.id == job_id).update(
                {
                    BackgroundJob.status: status,
                    BackgroundJob.updated_at: _utcnow(),
                },
                synchronize_session="fetch",
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to mark job %s %s: %s", job_id, status, str(exc))
            raise RepositoryException(f"Failed to mark job {status}") from exc

    def mark_failed(self, job_id: str, error: str) -> None:
        """Increment attempt counters and reschedule a job after a failure."""

        try:
            job = self.db.get(BackgroundJob, job_id)
            if job is None:
                self.logger.warning("Attempted to mark missing job %s failed", job_id)
                return

            attempts = (job.attempts or 0) + 1
            backoff_seconds = min(
                settings.jobs_backoff_cap, settings.jobs_backoff_base * (2 ** (attempts - 1))
            )

            job.status = "failed" if attempts >= MAX_ATTEMPTS else "queued"
            job.attempts = attempts
            job.available_at = _utcnow() + timedelta(seconds=backoff_seconds)
            job.last_error = error
            job.updated_at = _utcnow()

            self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to reschedule job %s: %s", job_id, str(exc))
            raise RepositoryException("Failed to reschedule background job") from exc
