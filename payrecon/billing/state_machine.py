# payrecon/billing/state_machine.py
import logging
from datetime import timedelta
from enum import Enum

from flask import current_app
from markupsafe import escape

from payrecon.extensions import db
from payrecon.models import (
    AdminAlert,
    CheckoutStatus,
    PaymentStatus,
    Plan,
    Transaction,
    TransactionStatus,
    User,
)
from payrecon.notifications import NotificationService
from payrecon.notifications.service import NotificationType
from payrecon.utils import add_months, utcnow

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_LENGTH = 500


class GrowStatusCode(str, Enum):
    PENDING = "1"
    PAID = "2"
    FAILED = "3"
    CANCELED = "4"


PAYMENT_METHODS = {
    "1": "credit_card",
    "2": "credit_card",
    "6": "bit",
    "13": "apple_pay",
    "14": "google_pay",
    "15": "bank_transfer",
}


def map_payment_method(payment_type):
    return PAYMENT_METHODS.get(str(payment_type) if payment_type is not None else "", "credit_card")


def sanitize_description(text):
    """HTML-escape processor supplied text before it is stored."""
    return str(escape(text or ""))[:DESCRIPTION_MAX_LENGTH]


def _parse_int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class SubscriptionStateMachine:
    """
    Owns every subscription status transition.

    Methods stage their changes in the current session. The caller
    commits them together with the idempotency ledger entry, except for
    the grace-period sweep which commits once per user.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else current_app.config

    # ---------- double payment defense ----------

    def find_recent_payment(self, user_id, now=None):
        now = now or utcnow()
        window = timedelta(minutes=self.config.get("DOUBLE_PAYMENT_WINDOW_MINUTES", 60))
        return (
            Transaction.query.filter(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.COMPLETED,
                Transaction.created_at > now - window,
            )
            .order_by(Transaction.created_at.desc())
            .first()
        )

    def has_recent_payment(self, user_id, now=None):
        return self.find_recent_payment(user_id, now) is not None

    def hold_for_review(self, user_id, data, previous=None, now=None):
        """Record a payment that must not auto-activate and alert an admin."""
        now = now or utcnow()
        transaction = Transaction(
            user_id=user_id,
            plan_id=data.custom_fields.plan_id,
            transaction_id=data.transaction_id,
            process_id=data.process_id,
            asmachta=data.asmachta,
            amount=data.amount or 0,
            payment_method=map_payment_method(data.payment_type),
            card_suffix=data.card_suffix,
            card_brand=data.card_brand,
            status=TransactionStatus.PENDING_REVIEW,
            status_code=data.status_code,
            billing_period=data.custom_fields.billing_period,
            description=sanitize_description(data.description),
            raw_payload=data.raw,
            created_at=now,
        )
        db.session.add(transaction)
        AdminAlert.create_double_payment_alert(
            user_id,
            data.transaction_id,
            previous.transaction_id if previous is not None else None,
        )
        logger.warning(
            "Double payment detected, requiring manual review",
            extra={"user_id": user_id, "transaction_id": data.transaction_id},
        )
        return transaction

    # ---------- activation ----------

    def activate(self, user, data, session=None, now=None):
        now = now or utcnow()
        fields = data.custom_fields

        plan_id = fields.plan_id or (session.plan_id if session else None)
        billing_period = fields.billing_period or (session.billing_period if session else None) or "monthly"
        credit_days = _parse_int(fields.credit_days) or (session.credit_days if session else 0) or 0

        months = 12 if billing_period == "yearly" else 1
        subscription_end = add_months(now, months)
        if credit_days > 0:
            subscription_end += timedelta(days=credit_days)

        payment_method = map_payment_method(data.payment_type)

        if plan_id:
            user.plan_id = plan_id
        user.payment_status = PaymentStatus.ACTIVE
        user.subscription_start = now
        user.subscription_end = subscription_end
        user.billing_period = billing_period
        user.processor_subscription_id = data.transaction_id
        user.last_payment_method = payment_method
        user.last_card_suffix = data.card_suffix
        user.last_card_brand = data.card_brand
        user.clear_grace_period()
        user.clear_pending_checkout()

        if session is not None and session.status == CheckoutStatus.PENDING:
            session.status = CheckoutStatus.COMPLETED
            session.completed_at = now

        transaction = Transaction(
            user_id=user.id,
            plan_id=plan_id,
            transaction_id=data.transaction_id,
            process_id=data.process_id,
            asmachta=data.asmachta,
            amount=data.amount or 0,
            payment_method=payment_method,
            card_suffix=data.card_suffix,
            card_brand=data.card_brand,
            status=TransactionStatus.COMPLETED,
            status_code=data.status_code,
            billing_period=billing_period,
            description=sanitize_description(data.description),
            raw_payload=data.raw,
            created_at=now,
            completed_at=now,
        )
        db.session.add(transaction)

        NotificationService.send_notification(
            user.id,
            NotificationType.PAYMENT_SUCCESS,
            {"amount": data.sum, "plan_id": plan_id},
        )

        logger.info(
            "Subscription activated",
            extra={
                "user_id": user.id,
                "plan_id": plan_id,
                "billing_period": billing_period,
                "credit_days": credit_days,
                "subscription_end": subscription_end.isoformat(),
            },
        )
        return transaction

    # ---------- grace period ----------

    def enter_grace_period(self, user_id, reason, now=None):
        now = now or utcnow()
        grace_end = now + timedelta(days=self.config.get("GRACE_PERIOD_DAYS", 7))

        user = db.session.get(User, user_id)
        if user is None:
            logger.warning("Grace period requested for unknown user", extra={"user_id": user_id})
            return None

        user.payment_status = PaymentStatus.GRACE_PERIOD
        user.grace_period_start = now
        user.grace_period_end = grace_end
        user.payment_failure_reason = reason

        NotificationService.send_notification(
            user_id,
            NotificationType.PAYMENT_FAILED,
            {"reason": reason, "grace_period_end": grace_end.isoformat()},
        )
        logger.info("Grace period started", extra={"user_id": user_id, "grace_period_end": grace_end.isoformat()})
        return user

    def expire_grace_periods(self, now=None):
        """Downgrade users whose grace period ended. Returns the count."""
        now = now or utcnow()

        free_plan = Plan.get_free_plan(self.config.get("FREE_PLAN_NAME", "FREE"))
        if free_plan is None:
            logger.error("Free plan not found - cannot process grace period expiries")
            return 0

        expired_ids = [
            user_id
            for (user_id,) in db.session.query(User.id).filter(
                User.payment_status == PaymentStatus.GRACE_PERIOD,
                User.grace_period_end < now,
            )
        ]

        downgraded = 0
        for user_id in expired_ids:
            # A payment may have landed since the scan; only a still-expired grace row is downgraded
            updated = User.query.filter(
                User.id == user_id,
                User.payment_status == PaymentStatus.GRACE_PERIOD,
                User.grace_period_end < now,
            ).update(
                {
                    "plan_id": free_plan.id,
                    "payment_status": PaymentStatus.EXPIRED,
                    "processor_subscription_id": None,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
            if updated != 1:
                db.session.rollback()
                logger.info("User left grace period during sweep, skipping", extra={"user_id": user_id})
                continue
            NotificationService.send_notification(user_id, NotificationType.SUBSCRIPTION_DOWNGRADED, {})
            db.session.commit()
            downgraded += 1
            logger.info("User downgraded due to grace period expiry", extra={"user_id": user_id})

        return downgraded
