"""
Paystack Webhook Endpoint

Receives charge and transfer notifications from Paystack. The signature
is verified against the raw body before anything is parsed or stored.

Responses:
- 200 when the event was applied or is a benign no-op
- 400 when the signature or payload is invalid
- 500 on unexpected errors, so Paystack redelivers
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..core.exceptions import ValidationException
from ..database import get_db
from ..integrations.paystack_client import SIGNATURE_HEADER
from ..schemas.paystack_webhooks import WebhookResponse
from ..services.paystack_webhook_service import PaystackWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["paystack-webhooks"])


def get_paystack_webhook_service(db: Session = Depends(get_db)) -> PaystackWebhookService:
    return PaystackWebhookService(db)


@router.post("/paystack", response_model=WebhookResponse, response_model_exclude_none=True)
async def handle_paystack_webhook(
    request: Request,
    service: PaystackWebhookService = Depends(get_paystack_webhook_service),
) -> WebhookResponse:
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    event_type: Optional[str] = None
    reference: Optional[str] = None

    try:
        await asyncio.to_thread(service.verify_signature, payload, signature)
        event = await asyncio.to_thread(service.parse, payload)
        event_type = event.event
        reference = event.data.reference

        outcome = await asyncio.to_thread(service.handle_event, event)
        logger.info(
            "Paystack webhook handled",
            extra={"event_type": event_type, "reference": reference, "outcome": outcome},
        )
        return WebhookResponse(status="success", event_type=event_type)

    except ValidationException as exc:
        logger.warning(
            "Rejected Paystack webhook: %s", exc.message, extra={"event_type": event_type}
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except Exception:
        logger.exception(
            "Error processing Paystack webhook",
            extra={"event_type": event_type, "reference": reference},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process webhook"
        )
