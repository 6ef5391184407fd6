"""Event publisher - writes events to the job outbox inside the caller's transaction."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Protocol

from iqraquest.repositories.background_job_repository import BackgroundJobRepository


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


def event_job_type(event: Event) -> str:
    return f"event:{type(event).__name__}"


class EventPublisher:
    """Publishes domain events to the job queue for async processing."""

    def __init__(self, job_repository: BackgroundJobRepository):
        self.job_repo = job_repository

    def publish(self, event: Event) -> str:
        """
        Queue an event for background processing.

        The job row is flushed in the current session, so it commits or rolls
        back together with the state change that produced the event.
        """
        payload = event.to_dict()

        # JSON-safe payload
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
            elif isinstance(value, Decimal):
                payload[key] = str(value)

        return self.job_repo.enqueue(type=event_job_type(event), payload=payload)

