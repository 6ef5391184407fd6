from .paystack_webhooks import PaystackEventData, PaystackWebhookPayload, WebhookResponse

__all__ = ["PaystackEventData", "PaystackWebhookPayload", "WebhookResponse"]
