import uuid
from datetime import datetime

from payrecon.extensions import db


class PaymentStatus:
    NONE = "none"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"


class User(db.Model):
    __tablename__ = "users"

    # ========== IDENTIFICATION ==========
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(20), nullable=True)

    # ========== SUBSCRIPTION & BILLING ==========
    plan_id = db.Column(db.String(36), db.ForeignKey("plans.id"), nullable=True)
    billing_period = db.Column(db.String(10), nullable=True)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.NONE)
    processor_subscription_id = db.Column(db.String(100), nullable=True)
    subscription_start = db.Column(db.DateTime, nullable=True)
    subscription_end = db.Column(db.DateTime, nullable=True)

    # ========== GRACE PERIOD ==========
    grace_period_start = db.Column(db.DateTime, nullable=True)
    grace_period_end = db.Column(db.DateTime, nullable=True, index=True)
    payment_failure_reason = db.Column(db.String(255), nullable=True)

    # ========== LAST PAYMENT ==========
    last_payment_method = db.Column(db.String(30), nullable=True)
    last_card_suffix = db.Column(db.String(4), nullable=True)
    last_card_brand = db.Column(db.String(30), nullable=True)

    # ========== CHECKOUT BOOKKEEPING ==========
    checkout_count_today = db.Column(db.Integer, nullable=False, default=0)
    last_checkout_at = db.Column(db.DateTime, nullable=True)
    pending_plan_id = db.Column(db.String(36), nullable=True)
    pending_billing_period = db.Column(db.String(10), nullable=True)
    checkout_initiated_at = db.Column(db.DateTime, nullable=True)

    # ========== TIMESTAMPS ==========
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # ========== RELATIONSHIPS ==========
    plan = db.relationship("Plan", foreign_keys=[plan_id])

    __table_args__ = (
        db.Index("idx_user_payment_status", "payment_status", "grace_period_end"),
    )

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def clear_pending_checkout(self):
        self.pending_plan_id = None
        self.pending_billing_period = None
        self.checkout_initiated_at = None

    def clear_grace_period(self):
        self.grace_period_start = None
        self.grace_period_end = None
        self.payment_failure_reason = None

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "plan_id": self.plan_id,
            "billing_period": self.billing_period,
            "payment_status": self.payment_status,
            "subscription_start": self.subscription_start.isoformat() if self.subscription_start else None,
            "subscription_end": self.subscription_end.isoformat() if self.subscription_end else None,
            "grace_period_end": self.grace_period_end.isoformat() if self.grace_period_end else None,
        }

    def __repr__(self):
        return f"<User {self.id} {self.payment_status}>"
