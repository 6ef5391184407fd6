"""
Tests for outbox event delivery.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from iqraquest.core import dedup
from iqraquest.events import handlers
from iqraquest.models import BackgroundJob, Notification
from iqraquest.services.escrow_service import EscrowService
from iqraquest.services.notification_service import NotificationService
from iqraquest.tasks.event_tasks import drain_due_events, drain_event_jobs


@pytest.fixture
def held_booking(db, student, fund_wallet, make_booking):
    fund_wallet(student, 10_000)
    booking = make_booking()
    EscrowService(db).create_hold(booking)
    return booking


def test_drain_delivers_funds_held_notification(db, student, held_booking):
    results = drain_due_events(db, limit=50)

    assert results == {"skipped": False, "delivered": 1, "failed": 0}
    job = db.query(BackgroundJob).one()
    assert job.status == "succeeded"
    notification = db.query(Notification).one()
    assert notification.user_id == student.id
    assert notification.type == "escrow_funds_held"
    assert notification.body.startswith("NGN 20.00")
    assert notification.data["booking_id"] == held_booking.id


def test_drain_skips_already_delivered_jobs(db, held_booking):
    drain_due_events(db, limit=50)

    results = drain_due_events(db, limit=50)

    assert results["delivered"] == 0
    assert db.query(Notification).count() == 1


def test_failing_handler_reschedules_job(db, held_booking, monkeypatch):
    def boom(payload, session):
        raise RuntimeError("template missing")

    monkeypatch.setitem(handlers.EVENT_HANDLERS, "event:FundsHeld", boom)

    results = drain_due_events(db, limit=50)

    assert results == {"skipped": False, "delivered": 0, "failed": 1}
    job = db.query(BackgroundJob).one()
    assert job.status == "queued"
    assert job.attempts == 1
    assert job.last_error == "template missing"
    assert db.query(Notification).count() == 0


def test_duplicate_delivery_is_deduplicated(db, held_booking, monkeypatch):
    claimed = set()

    def claim(key, ttl_s=None):
        if key in claimed:
            return False
        claimed.add(key)
        return True

    monkeypatch.setattr(dedup, "claim", claim)
    job = db.query(BackgroundJob).one()

    handlers.process_event(job.type, dict(job.payload), db)
    handlers.process_event(job.type, dict(job.payload), db)

    assert db.query(Notification).count() == 1


def test_unknown_event_type_is_consumed(db):
    assert handlers.process_event("event:SomethingNew", {}, db) is True
    assert handlers.process_event("email:welcome", {}, db) is False


def test_drain_task_skips_when_locked():
    with patch("iqraquest.tasks.event_tasks.job_lock") as mock_job_lock:
        mock_job_lock.return_value.__enter__.return_value = False

        result = drain_event_jobs()

    assert result == {"skipped": True, "delivered": 0, "failed": 0}


def test_rolled_back_delivery_releases_dedup_claims(db, student, teacher, held_booking, monkeypatch):
    store = {}
    client = MagicMock()
    client.set.side_effect = lambda key, value, nx, ex: None if key in store else store.setdefault(key, value)
    client.delete.side_effect = lambda key: store.pop(key, None)
    monkeypatch.setattr(dedup, "get_sync_redis", lambda: client)

    notify = NotificationService.notify
    failures = []

    def notify_failing_once(self, user_id, notification_type, *args, **kwargs):
        if notification_type == "escrow_partial_refund" and not failures:
            failures.append(notification_type)
            raise RuntimeError("inbox unavailable")
        return notify(self, user_id, notification_type, *args, **kwargs)

    monkeypatch.setattr(NotificationService, "notify", notify_failing_once)
    EscrowService(db).partial_release(held_booking, 50, "short session")

    first = drain_due_events(db, limit=50)
    job = db.query(BackgroundJob).filter(BackgroundJob.type == "event:FundsPartiallyReleased").one()
    job.available_at = job.available_at - timedelta(hours=1)
    db.commit()
    second = drain_due_events(db, limit=50)

    assert first == {"skipped": False, "delivered": 1, "failed": 1}
    assert second == {"skipped": False, "delivered": 1, "failed": 0}
    by_user = {}
    for notification in db.query(Notification).all():
        by_user.setdefault(notification.user_id, []).append(notification.type)
    assert by_user[teacher.id] == ["escrow_partial_release"]
    assert sorted(by_user[student.id]) == ["escrow_funds_held", "escrow_partial_refund"]
