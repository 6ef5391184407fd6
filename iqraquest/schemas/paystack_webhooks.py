"""Pydantic models for the Paystack webhook endpoint."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ._strict_base import StrictModel


class PaystackEventData(BaseModel):
    """
    The ``data`` member of a Paystack event.

    Only the fields the reconciler reads are declared; Paystack sends many
    more and they are kept as extras for the webhook ledger.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[int | str] = None
    reference: Optional[str] = None
    amount: Optional[int] = Field(None, description="Amount in minor units (kobo)")
    currency: Optional[str] = None
    status: Optional[str] = None
    transfer_code: Optional[str] = None
    reason: Optional[str] = None
    gateway_response: Optional[str] = None


class PaystackWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = Field(..., min_length=1)
    data: PaystackEventData

    @property
    def event_id(self) -> str:
        """Stable identifier used to dedupe gateway retries in the webhook ledger."""
        key = self.data.id if self.data.id is not None else self.data.reference
        return f"{self.event}:{key}" if key is not None else self.event


class WebhookResponse(StrictModel):
    """Response for webhook processing."""

    status: str = Field(..., description="Processing status (success, ignored)")
    event_type: Optional[str] = Field(None, description="Paystack event type")
    message: Optional[str] = Field(None, description="Additional information")


__all__ = ["PaystackEventData", "PaystackWebhookPayload", "WebhookResponse"]
