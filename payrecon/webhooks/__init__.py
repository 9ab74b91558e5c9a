from payrecon.webhooks.engine import AcknowledgementDispatcher, WebhookIngestionEngine, WebhookResult
from payrecon.webhooks.payload import GrowWebhookPayload

__all__ = [
    "AcknowledgementDispatcher",
    "GrowWebhookPayload",
    "WebhookIngestionEngine",
    "WebhookResult",
]
