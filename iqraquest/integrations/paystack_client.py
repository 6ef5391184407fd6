"""Minimal Paystack API client for wallet funding and teacher transfers."""

from __future__ import annotations

from hashlib import sha512
import hmac
import json
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import SecretStr

from ..core.config import settings
from ..core.exceptions import GatewayError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(secret: str, payload: bytes) -> str:
    """HMAC-SHA512 hex digest Paystack sends with every webhook."""
    mac = hmac.new(secret.encode("utf-8"), payload, sha512)
    return mac.hexdigest()


def signature_matches(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, payload), signature.strip().lower())


class PaystackClient:
    """Thin client for the Paystack REST API."""

    def __init__(
        self,
        *,
        secret_key: str | SecretStr,
        base_url: str = "https://api.paystack.co",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = (
            secret_key.get_secret_value() if isinstance(secret_key, SecretStr) else secret_key
        )
        if not secret_value:
            raise ValueError("Paystack secret key must be provided")

        self._secret_key = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def initialize_transaction(
        self,
        *,
        email: str,
        amount: int,
        reference: str,
        currency: str,
        metadata: Dict[str, Any] | None = None,
        callback_url: str | None = None,
    ) -> Dict[str, Any]:
        """Start a hosted checkout; returns ``authorization_url``, ``access_code`` and ``reference``."""

        body: Dict[str, Any] = {
            "email": email,
            "amount": amount,
            "reference": reference,
            "currency": currency,
            "metadata": metadata or {},
        }
        if callback_url:
            body["callback_url"] = callback_url
        return self.request("POST", "/transaction/initialize", json_body=body)

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """Fetch the authoritative status of a charge."""

        if not reference:
            raise ValueError("reference must be provided")
        return self.request("GET", f"/transaction/verify/{reference}")

    def initiate_transfer(
        self,
        *,
        amount: int,
        recipient: str,
        reference: str,
        reason: str | None = None,
        currency: str | None = None,
    ) -> Dict[str, Any]:
        """Queue a transfer; the final outcome arrives via ``transfer.*`` webhooks."""

        body: Dict[str, Any] = {
            "source": "balance",
            "amount": amount,
            "recipient": recipient,
            "reference": reference,
        }
        if reason:
            body["reason"] = reason
        if currency:
            body["currency"] = currency
        return self.request("POST", "/transfer", json_body=body)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a Paystack API request and return the ``data`` member of the envelope."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {self._secret_key}",
            },
        ) as client:
            try:
                response = client.request(method, url, json=json_body, params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                try:
                    error_payload: Any = exc.response.json()
                except json.JSONDecodeError:
                    error_payload = exc.response.text
                message = (
                    error_payload.get("message")
                    if isinstance(error_payload, dict)
                    else None
                ) or f"Paystack API error ({status})"
                logger.error("Paystack API error %s for %s %s: %s", status, method, path, message)
                raise GatewayError(message, status_code=status, response=error_payload) from exc
            except httpx.HTTPError as exc:
                logger.error("Paystack request failed for %s %s: %s", method, path, exc)
                raise GatewayError(f"Paystack request failed: {exc}") from exc

        try:
            envelope = response.json()
        except json.JSONDecodeError as exc:
            raise GatewayError(
                "Paystack returned a non-JSON response", status_code=response.status_code
            ) from exc

        if not isinstance(envelope, dict) or not envelope.get("status"):
            message = envelope.get("message") if isinstance(envelope, dict) else None
            raise GatewayError(
                message or "Paystack rejected the request",
                status_code=response.status_code,
                response=envelope,
            )

        data = envelope.get("data")
        return data if isinstance(data, dict) else {}


def get_paystack_client() -> PaystackClient:
    """Build a client from application settings."""
    return PaystackClient(
        secret_key=settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout=settings.paystack_timeout_seconds,
    )
