# payrecon/webhooks/engine.py
"""
Webhook ingestion and reconciliation.

A delivery is authenticated, parsed, claimed in the idempotency ledger
and routed on the processor status code. Subscription changes and the
ledger outcome are committed together; the acknowledgement to the
processor happens afterwards on a detached thread.
"""

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from flask import current_app

from payrecon.billing.rate_limits import WebhookRateLimiter
from payrecon.billing.state_machine import GrowStatusCode, SubscriptionStateMachine
from payrecon.extensions import db, get_redis_client
from payrecon.gateway import GatewayClient
from payrecon.models import AdminAlert, CheckoutSession, CheckoutStatus, User, WebhookEventStatus
from payrecon.notifications import AlertService
from payrecon.utils import is_uuid, utcnow
from payrecon.webhooks.idempotency import claim_event, mark_event
from payrecon.webhooks.payload import GrowWebhookPayload
from payrecon.webhooks.security import verify_signature

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    subscription_activated: bool = False
    processed: Optional[bool] = None
    rate_limited: bool = False
    rejected: bool = False
    requires_manual_review: bool = False
    notification_sent: bool = False
    action: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    # (process_id, process_token, amount) to confirm once the ledger is committed
    acknowledgement: Optional[tuple] = field(default=None, repr=False)

    @property
    def was_processed(self):
        return self.subscription_activated or self.processed is not False

    def to_response(self):
        return {
            "received": True,
            "processed": self.was_processed,
            "message": self.reason or self.error or "OK",
        }

    def to_dict(self):
        return {
            "subscriptionActivated": self.subscription_activated,
            "processed": self.processed,
            "rateLimited": self.rate_limited,
            "rejected": self.rejected,
            "requiresManualReview": self.requires_manual_review,
            "notificationSent": self.notification_sent,
            "action": self.action,
            "reason": self.reason,
            "error": self.error,
            "warnings": self.warnings,
        }


def _start_daemon(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


class AcknowledgementDispatcher:
    """
    Sends approveTransaction after activation has been committed.

    Runs on a daemon thread with its own app context. A failure is
    logged and alerted on; it never reverses the activation.
    """

    def __init__(self, app, gateway, runner=None):
        self.app = app
        self.gateway = gateway
        self.runner = runner or _start_daemon

    def dispatch(self, user_id, transaction_id, process_id, process_token, amount):
        return self.runner(self._acknowledge, user_id, transaction_id, process_id, process_token, amount)

    def _acknowledge(self, user_id, transaction_id, process_id, process_token, amount):
        with self.app.app_context():
            try:
                self.gateway.acknowledge_transaction(process_id, process_token, amount)
            except Exception as e:
                logger.exception(
                    "ApproveTransaction failed",
                    extra={"process_id": process_id, "transaction_id": transaction_id},
                )
                AlertService.raise_alert(
                    "approve_transaction_failed",
                    "Failed to acknowledge payment to Grow",
                    severity="high",
                    user_id=user_id,
                    data={
                        "process_id": process_id,
                        "transaction_id": transaction_id,
                        "error": str(e),
                    },
                    commit=True,
                )


class WebhookIngestionEngine:
    def __init__(self, app=None, gateway=None, state_machine=None, rate_limiter=None, dispatcher=None):
        self.app = app or current_app._get_current_object()
        self.config = self.app.config
        self.gateway = gateway or GatewayClient.from_config(self.config)
        self.state_machine = state_machine or SubscriptionStateMachine(self.config)

        if rate_limiter is None:
            shared = get_redis_client() if self.config.get("WEBHOOK_RATE_LIMIT_BACKEND") == "redis" else None
            rate_limiter = WebhookRateLimiter(
                self.config.get("WEBHOOK_MAX_PER_MINUTE", 100),
                redis_client=shared,
            )
        self.rate_limiter = rate_limiter
        self.dispatcher = dispatcher or AcknowledgementDispatcher(self.app, self.gateway)

    @property
    def is_production(self):
        return self.config.get("ENVIRONMENT") == "production"

    # ---------- entry points ----------

    def ingest(self, raw_body: bytes, signature) -> GrowWebhookPayload:
        """Authenticate and parse a raw delivery. Raises SecurityRejection or PayloadError."""
        verify_signature(
            raw_body,
            signature,
            self.config.get("GROW_WEBHOOK_SECRET"),
            production=self.is_production,
        )
        return GrowWebhookPayload.from_json(raw_body)

    def process(self, raw_body: bytes, signature) -> WebhookResult:
        if not self.rate_limiter.allow():
            return self._rate_limited()
        payload = self.ingest(raw_body, signature)
        return self._handle(payload)

    def handle(self, payload: GrowWebhookPayload) -> WebhookResult:
        if not self.rate_limiter.allow():
            return self._rate_limited()
        return self._handle(payload)

    @staticmethod
    def _rate_limited():
        logger.warning("Webhook rate limit exceeded")
        return WebhookResult(processed=False, rate_limited=True, reason="Rate limit exceeded")

    # ---------- reconciliation ----------

    def _handle(self, payload):
        data = payload.data
        transaction_id = data.transaction_id
        user_id = data.custom_fields.user_id

        if not user_id:
            AlertService.raise_alert(
                "missing_user_identification",
                "Webhook missing user identification",
                data={"transaction_id": transaction_id, "process_id": data.process_id},
                commit=True,
            )
            return WebhookResult(
                processed=False,
                error="Missing user identification",
                requires_manual_review=True,
            )

        if not is_uuid(user_id):
            logger.warning("Webhook carries malformed user id", extra={"transaction_id": transaction_id})
            return WebhookResult(processed=False, rejected=True, reason="Invalid user ID format")

        if transaction_id:
            claim = claim_event(transaction_id)
            if not claim.claimed:
                logger.info(
                    "Duplicate webhook, skipping",
                    extra={"transaction_id": transaction_id, "ledger_status": claim.existing_status},
                )
                return WebhookResult(processed=False, reason="Already processed")

        try:
            result = self._reconcile(data, user_id)
        except Exception as e:
            db.session.rollback()
            logger.exception("Webhook processing error", extra={"transaction_id": transaction_id})
            if transaction_id:
                mark_event(
                    transaction_id,
                    WebhookEventStatus.FAILED,
                    {"retryable": True, "error": str(e)},
                    retryable=True,
                )
                db.session.commit()
            raise

        if result.acknowledgement is not None:
            self.dispatcher.dispatch(user_id, transaction_id, *result.acknowledgement)
        return result

    def _finish(self, transaction_id, status, result_data, result):
        mark_event(transaction_id, status, result_data)
        db.session.commit()
        return result

    def _reconcile(self, data, user_id):
        now = utcnow()
        transaction_id = data.transaction_id

        session = CheckoutSession.find_by_process_id(data.process_id)
        if session is None:
            # The user may still have paid; keep going
            logger.warning("No checkout session found for processId", extra={"process_id": data.process_id})
        elif session.is_expired(now):
            return self._finish(
                transaction_id,
                WebhookEventStatus.FAILED,
                {"reason": "Checkout session expired"},
                WebhookResult(processed=False, rejected=True, reason="Checkout session expired"),
            )

        amount = data.amount
        if session is not None and amount is not None and amount != Decimal(session.amount):
            AdminAlert.create_amount_mismatch_alert(user_id, data.process_id, session.amount, data.sum)
            return self._finish(
                transaction_id,
                WebhookEventStatus.FAILED,
                {"reason": "Amount mismatch"},
                WebhookResult(processed=False, rejected=True, reason="Amount mismatch"),
            )

        user = db.session.get(User, user_id)
        if user is None:
            logger.warning("User not found", extra={"user_id": user_id})
            return self._finish(
                transaction_id,
                WebhookEventStatus.FAILED,
                {"reason": "User not found"},
                WebhookResult(processed=False, reason="User not found"),
            )

        status_code = data.status_code

        if status_code == GrowStatusCode.PENDING:
            return self._finish(
                transaction_id,
                WebhookEventStatus.COMPLETED,
                {"action": "awaiting_final_status"},
                WebhookResult(action="awaiting_final_status"),
            )

        if status_code in (GrowStatusCode.FAILED, GrowStatusCode.CANCELED):
            self.state_machine.enter_grace_period(user.id, data.status or "Payment failed", now)
            return self._finish(
                transaction_id,
                WebhookEventStatus.COMPLETED,
                {"notificationSent": True},
                WebhookResult(notification_sent=True),
            )

        if status_code == GrowStatusCode.PAID:
            return self._handle_paid(user, data, session, now)

        AlertService.raise_alert(
            "unknown_status_code",
            f"Unknown payment status code: {status_code}",
            user_id=user_id,
            data={"transaction_id": transaction_id, "status_code": status_code},
        )
        return self._finish(
            transaction_id,
            WebhookEventStatus.COMPLETED,
            {"requiresManualReview": True},
            WebhookResult(requires_manual_review=True),
        )

    def _handle_paid(self, user, data, session, now):
        transaction_id = data.transaction_id

        if session is not None and session.status != CheckoutStatus.PENDING:
            # Superseded, abandoned or already completed processes are never honoured automatically
            AlertService.raise_alert(
                "stale_checkout_session",
                "Payment received for a checkout that is no longer pending",
                description=f"Process {session.process_id} is {session.status}",
                severity="high",
                user_id=user.id,
                data={
                    "transaction_id": transaction_id,
                    "process_id": session.process_id,
                    "session_status": session.status,
                    "amount": data.sum,
                },
            )
            return self._finish(
                transaction_id,
                WebhookEventStatus.FAILED,
                {"reason": "Checkout session not pending", "sessionStatus": session.status},
                WebhookResult(
                    processed=False,
                    rejected=True,
                    requires_manual_review=True,
                    reason="Checkout session no longer pending",
                ),
            )

        previous = self.state_machine.find_recent_payment(user.id, now)
        if previous is not None:
            self.state_machine.hold_for_review(user.id, data, previous, now)
            return self._finish(
                transaction_id,
                WebhookEventStatus.COMPLETED,
                {"requiresManualReview": True},
                WebhookResult(
                    requires_manual_review=True,
                    reason="Potential double payment - pending admin review",
                    warnings=["Recent payment detected - subscription activation paused for review"],
                ),
            )

        self.state_machine.activate(user, data, session, now)
        acknowledgement = (
            data.process_id or (session.process_id if session else ""),
            data.process_token or (session.process_token if session else ""),
            data.sum or (str(session.amount) if session else ""),
        )
        return self._finish(
            transaction_id,
            WebhookEventStatus.COMPLETED,
            {"subscriptionActivated": True},
            WebhookResult(subscription_activated=True, acknowledgement=acknowledgement),
        )
