# payrecon/billing/checkout.py
"""
Checkout session creation.

Validates the request, prices the plan, credits unused days of a paid
plan, supersedes older pending sessions and asks the processor for a
hosted payment page.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import urlparse

from flask import current_app

from payrecon.billing.rate_limits import CheckoutQuota
from payrecon.errors import InvalidPlanError, NotFoundError, RateLimitError, ValidationError
from payrecon.extensions import db
from payrecon.gateway import GatewayClient
from payrecon.models import CheckoutSession, CheckoutStatus, Plan, User
from payrecon.models.plan import BILLING_PERIODS
from payrecon.utils import is_uuid, utcnow

logger = logging.getLogger(__name__)

MAX_INSTALLMENTS = 12


@dataclass
class CheckoutResult:
    checkout_url: str
    process_id: str
    process_token: str
    credit_days: int

    def to_dict(self):
        return {
            "checkoutUrl": self.checkout_url,
            "processId": self.process_id,
            "processToken": self.process_token,
            "creditDays": self.credit_days,
        }


ALLOWED_REDIRECT_SCHEMES = ("https", "http")


def is_allowed_redirect(url, allowed_hosts):
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return False
    if parsed.scheme.lower() not in ALLOWED_REDIRECT_SCHEMES or not hostname:
        return False
    return any(hostname == host or hostname.endswith(f".{host}") for host in allowed_hosts)


class CheckoutSessionManager:
    def __init__(self, gateway=None, config=None):
        self.config = config if config is not None else current_app.config
        self.gateway = gateway or GatewayClient.from_config(self.config)
        self.quota = CheckoutQuota(self.config.get("CHECKOUT_MAX_PER_DAY", 10))

    # ---------- validation ----------

    @staticmethod
    def validate_user_id(user_id):
        if not user_id or not str(user_id).strip():
            raise ValidationError("User ID is required")
        if not is_uuid(user_id):
            raise ValidationError("Invalid user ID format")

    @staticmethod
    def validate_installments(billing_period, installments, plan):
        if installments > 1 and billing_period != "yearly":
            raise ValidationError("Installments only available for yearly plans")
        if installments < 1 or installments > MAX_INSTALLMENTS:
            raise ValidationError(f"Installments must be between 1 and {MAX_INSTALLMENTS}")
        max_installments = plan.max_installments or MAX_INSTALLMENTS
        if installments > max_installments:
            raise ValidationError(
                f"{plan.name} plan allows maximum {max_installments} installments"
            )

    def validate_redirect_url(self, url):
        if not is_allowed_redirect(url, self.config.get("REDIRECT_ALLOWED_HOSTS", [])):
            raise ValidationError("Invalid redirect URL")
        return url

    # ---------- pricing ----------

    def calculate_credit_days(self, user, now):
        """Whole days left on a paid plan, carried into the new subscription."""
        if not user.subscription_end or not user.plan:
            return 0
        if user.plan.name.upper() == self.config.get("FREE_PLAN_NAME", "FREE").upper():
            return 0
        if user.subscription_end <= now:
            return 0
        return (user.subscription_end - now).days

    def supersede_pending(self, user_id):
        count = CheckoutSession.query.filter_by(
            user_id=user_id, status=CheckoutStatus.PENDING
        ).update({"status": CheckoutStatus.SUPERSEDED}, synchronize_session=False)
        if count:
            logger.info("Superseded pending checkouts", extra={"user_id": user_id, "count": count})
        return count

    def build_form_data(self, user, plan, billing_period, price, installments, credit_days, success_url, cancel_url):
        app_url = self.config.get("APP_URL", "").rstrip("/")
        period_label = "yearly" if billing_period == "yearly" else "monthly"
        form = {
            "pageCode": self.config.get("GROW_PAGE_CODE", ""),
            "userId": self.config.get("GROW_USER_ID", ""),
            "sum": str(price),
            "successUrl": success_url,
            "cancelUrl": cancel_url,
            "notifyUrl": f"{app_url}/api/webhooks/grow",
            "pageField[fullName]": user.full_name,
            "pageField[phone]": user.phone or "",
            "pageField[email]": user.email or "",
            "description": f"{plan.display_name or plan.name} plan - {period_label}",
            # cField1 is the primary correlation key for webhooks
            "cField1": user.id,
            "cField2": plan.id,
            "cField3": billing_period,
            "cField4": str(installments),
            "cField5": str(credit_days),
        }
        if installments > 1 and billing_period == "yearly":
            form["maxPayments"] = str(installments)
            form["minPayments"] = "1"
        return form

    # ---------- entry point ----------

    def create_checkout_process(
        self,
        user_id,
        plan_id,
        billing_period,
        installments=1,
        success_url=None,
        cancel_url=None,
    ):
        self.validate_user_id(user_id)
        if billing_period not in BILLING_PERIODS:
            raise ValidationError("Billing period must be 'monthly' or 'yearly'")
        try:
            installments = int(installments if installments is not None else 1)
        except (TypeError, ValueError):
            raise ValidationError("Installments must be an integer")

        now = utcnow()
        user = db.session.get(User, user_id)
        self.quota.check(user, now)
        if user is None:
            raise NotFoundError("User not found")

        plan = Plan.query.filter_by(id=plan_id, is_active=True).first() if plan_id else None
        if plan is None:
            raise NotFoundError("Plan not found")

        price = plan.price_for(billing_period)
        if not price or price <= 0:
            raise InvalidPlanError("Cannot create checkout for free plan")

        self.validate_installments(billing_period, installments, plan)

        app_url = self.config.get("APP_URL", "").rstrip("/")
        success_url = self.validate_redirect_url(success_url or f"{app_url}/billing?status=success")
        cancel_url = self.validate_redirect_url(cancel_url or f"{app_url}/pricing")

        credit_days = self.calculate_credit_days(user, now)

        # No transaction is held open across the outbound call
        db.session.commit()

        form = self.build_form_data(
            user, plan, billing_period, price, installments, credit_days, success_url, cancel_url
        )
        process = self.gateway.create_payment_process(form)

        # Older pending pages stay usable until a replacement exists
        self.supersede_pending(user.id)

        ttl = timedelta(minutes=self.config.get("CHECKOUT_SESSION_TTL_MINUTES", 60))
        session = CheckoutSession(
            user_id=user.id,
            plan_id=plan.id,
            plan_snapshot=plan.snapshot(),
            billing_period=billing_period,
            amount=price,
            installments=installments,
            credit_days=credit_days,
            process_id=process.process_id,
            process_token=process.process_token,
            status=CheckoutStatus.PENDING,
            created_at=now,
            expires_at=now + ttl,
        )
        db.session.add(session)

        user.pending_plan_id = plan.id
        user.pending_billing_period = billing_period
        user.checkout_initiated_at = now
        try:
            self.quota.record(user, now)
        except RateLimitError:
            db.session.rollback()
            raise
        db.session.commit()

        logger.info(
            "Payment process created",
            extra={
                "user_id": user.id,
                "plan_id": plan.id,
                "billing_period": billing_period,
                "amount": price,
                "installments": installments,
                "credit_days": credit_days,
                "process_id": process.process_id,
            },
        )

        return CheckoutResult(
            checkout_url=process.url,
            process_id=process.process_id,
            process_token=process.process_token,
            credit_days=credit_days,
        )
