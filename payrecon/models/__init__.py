from payrecon.models.admin_alert import AdminAlert
from payrecon.models.checkout_session import CheckoutSession, CheckoutStatus
from payrecon.models.payment_notification import PaymentNotification
from payrecon.models.plan import Plan
from payrecon.models.transaction import Transaction, TransactionStatus
from payrecon.models.user import PaymentStatus, User
from payrecon.models.webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "AdminAlert",
    "CheckoutSession",
    "CheckoutStatus",
    "PaymentNotification",
    "PaymentStatus",
    "Plan",
    "Transaction",
    "TransactionStatus",
    "User",
    "WebhookEvent",
    "WebhookEventStatus",
]
