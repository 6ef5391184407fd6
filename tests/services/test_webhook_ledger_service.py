from iqraquest.models import WebhookEvent
from iqraquest.services.webhook_ledger_service import WebhookLedgerService


def _log(service, event_id, event_type="charge.success"):
    with service.transaction():
        return service.log_received(
            source="paystack",
            event_type=event_type,
            event_id=event_id,
            payload={"event": event_type, "data": {"id": event_id}},
            reference=f"WAL-{event_id}",
        )


def test_log_received_creates_row(db):
    service = WebhookLedgerService(db)

    event = _log(service, "101")

    assert event.status == "received"
    assert event.retry_count == 0
    assert event.reference == "WAL-101"
    assert db.query(WebhookEvent).count() == 1


def test_redelivery_bumps_retry_count(db):
    service = WebhookLedgerService(db)
    first = _log(service, "101")

    again = _log(service, "101")

    assert again.id == first.id
    assert again.retry_count == 1
    assert again.last_retry_at is not None
    assert db.query(WebhookEvent).count() == 1


def test_outcomes_and_summary(db):
    service = WebhookLedgerService(db)
    ok = _log(service, "1")
    bad = _log(service, "2", "transfer.failed")
    skipped = _log(service, "3", "subscription.create")

    with service.transaction():
        service.mark_processed(ok, duration_ms=12)
        service.mark_failed(bad, error="Payout not found", duration_ms=3)
        service.mark_processed(skipped, duration_ms=1, status="ignored")

    assert bad.processing_error == "Payout not found"
    assert ok.processed_at is not None
    assert service.summarize_by_status() == {"processed": 1, "failed": 1, "ignored": 1}
    failed = service.list_events(source="paystack", status="failed")
    assert [e.event_type for e in failed] == ["transfer.failed"]
