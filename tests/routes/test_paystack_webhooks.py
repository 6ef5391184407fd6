import asyncio
from hashlib import sha512
import hmac
import json
from unittest.mock import MagicMock

import pytest

from iqraquest.core.config import settings
from iqraquest.models import WebhookEvent
from iqraquest.models.wallet import TransactionPurpose
from iqraquest.routes.paystack_webhooks import get_paystack_webhook_service
from iqraquest.services.ledger_service import LedgerService
from iqraquest.services.paystack_webhook_service import PaystackWebhookService

URL = "/webhooks/paystack"
WEBHOOK_SECRET = settings.paystack_secret_key.get_secret_value()


def _post(client, payload: dict, *, secret: str = WEBHOOK_SECRET, signature: str | None = None):
    body = json.dumps(payload).encode()
    headers = {"content-type": "application/json"}
    sig = signature if signature is not None else hmac.new(secret.encode(), body, sha512).hexdigest()
    if sig:
        headers["x-paystack-signature"] = sig
    return client.post(URL, content=body, headers=headers)


@pytest.fixture
def pending_funding(db, student):
    ledger = LedgerService(db)
    with ledger.transaction():
        ledger.record_pending_charge(
            student.id, 5_000, purpose=TransactionPurpose.WALLET_CREDIT, reference="WAL-route"
        )
    return "WAL-route"


def test_charge_success_is_applied(client, db, student, pending_funding):
    response = _post(
        client,
        {"event": "charge.success", "data": {"id": 9001, "reference": pending_funding, "amount": 5_000}},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "success", "event_type": "charge.success"}
    assert LedgerService(db).get_balance(student.id) == 5_000


def test_redelivery_is_acknowledged_without_double_credit(client, db, student, pending_funding):
    payload = {"event": "charge.success", "data": {"id": 9001, "reference": pending_funding}}

    assert _post(client, payload).status_code == 200
    assert _post(client, payload).status_code == 200

    assert LedgerService(db).get_balance(student.id) == 5_000
    assert db.query(WebhookEvent).one().retry_count == 1


def test_invalid_signature_is_rejected_without_side_effects(client, db, student, pending_funding):
    response = _post(
        client,
        {"event": "charge.success", "data": {"id": 9001, "reference": pending_funding}},
        secret="not-the-secret",
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook signature"
    assert LedgerService(db).get_balance(student.id) == 0
    assert db.query(WebhookEvent).count() == 0


def test_missing_signature_is_rejected(client, db):
    response = _post(client, {"event": "charge.success", "data": {}}, signature="")

    assert response.status_code == 400
    assert db.query(WebhookEvent).count() == 0


def test_malformed_payload_is_rejected(client):
    response = _post(client, {"data": {"reference": "x"}})

    assert response.status_code == 400


def test_unknown_event_is_acknowledged(client, db):
    response = _post(client, {"event": "customeridentification.success", "data": {"id": 3}})

    assert response.status_code == 200
    assert db.query(WebhookEvent).one().status == "ignored"


def test_unexpected_error_returns_500_for_redelivery(client, db, pending_funding):
    from iqraquest.main import app

    ledger = LedgerService(db)
    ledger.complete_pending_charge = MagicMock(side_effect=RuntimeError("boom"))
    app.dependency_overrides[get_paystack_webhook_service] = lambda: PaystackWebhookService(
        db, ledger=ledger
    )

    response = _post(
        client, {"event": "charge.success", "data": {"id": 9002, "reference": pending_funding}}
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to process webhook"
    assert db.query(WebhookEvent).one().status == "failed"


def _runs_on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_processing_runs_off_the_event_loop(client, db):
    from iqraquest.main import app

    service = PaystackWebhookService(db)
    seen = {}
    handle_event = service.handle_event

    def record_thread(event):
        seen["on_loop"] = _runs_on_event_loop()
        return handle_event(event)

    service.handle_event = MagicMock(side_effect=record_thread)
    app.dependency_overrides[get_paystack_webhook_service] = lambda: service

    response = _post(client, {"event": "customeridentification.success", "data": {"id": 4}})

    assert response.status_code == 200
    service.handle_event.assert_called_once()
    assert seen == {"on_loop": False}
