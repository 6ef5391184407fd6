from hashlib import sha512
import hmac
import json

import httpx
import pytest

from iqraquest.core.exceptions import GatewayError
from iqraquest.integrations.paystack_client import (
    PaystackClient,
    compute_signature,
    signature_matches,
)


def _client(handler) -> PaystackClient:
    return PaystackClient(secret_key="sk_test_abc", transport=httpx.MockTransport(handler))


def test_initialize_transaction_posts_body_and_returns_data():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.com/xyz",
                    "access_code": "xyz",
                    "reference": "WAL-1",
                },
            },
        )

    data = _client(handler).initialize_transaction(
        email="student@example.com",
        amount=500_000,
        reference="WAL-1",
        currency="NGN",
        callback_url="https://app.iqraquest.test/wallet",
    )

    assert data["authorization_url"] == "https://checkout.paystack.com/xyz"
    assert seen["url"] == "https://api.paystack.co/transaction/initialize"
    assert seen["auth"] == "Bearer sk_test_abc"
    assert seen["body"]["amount"] == 500_000
    assert seen["body"]["callback_url"] == "https://app.iqraquest.test/wallet"


def test_initiate_transfer_sends_balance_source():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"status": True, "data": {"transfer_code": "TRF_1", "status": "pending"}}
        )

    data = _client(handler).initiate_transfer(
        amount=1_500_000, recipient="RCP_1", reference="PAYOUT-1", reason="payout"
    )

    assert data["transfer_code"] == "TRF_1"
    assert seen["body"] == {
        "source": "balance",
        "amount": 1_500_000,
        "recipient": "RCP_1",
        "reference": "PAYOUT-1",
        "reason": "payout",
    }


def test_http_error_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": False, "message": "Invalid recipient"})

    with pytest.raises(GatewayError) as exc_info:
        _client(handler).initiate_transfer(amount=1, recipient="bad", reference="PAYOUT-2")

    assert exc_info.value.message == "Invalid recipient"
    assert exc_info.value.http_status == 400
    assert exc_info.value.response == {"status": False, "message": "Invalid recipient"}


def test_false_envelope_status_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": False, "message": "Transaction not found"})

    with pytest.raises(GatewayError, match="Transaction not found"):
        _client(handler).verify_transaction("WAL-missing")


def test_network_failure_becomes_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError):
        _client(handler).verify_transaction("WAL-1")


def test_secret_key_is_required():
    with pytest.raises(ValueError):
        PaystackClient(secret_key="")


def test_signature_helpers():
    body = b'{"event":"charge.success"}'
    expected = hmac.new(b"sk_test_abc", body, sha512).hexdigest()

    assert compute_signature("sk_test_abc", body) == expected
    assert signature_matches("sk_test_abc", body, expected.upper())
    assert not signature_matches("sk_test_abc", body + b" ", expected)
    assert not signature_matches("", body, expected)
    assert not signature_matches("sk_test_abc", body, None)
