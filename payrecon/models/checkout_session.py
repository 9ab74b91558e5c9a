import uuid
from datetime import datetime

from payrecon.extensions import db


class CheckoutStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"
    ABANDONED = "abandoned"


class CheckoutSession(db.Model):
    """One outbound payment process created for a user.

    The processor's ``process_id`` ties later webhook deliveries back to
    the amount and plan that were actually offered.
    """

    __tablename__ = "checkout_sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    plan_id = db.Column(db.String(36), db.ForeignKey("plans.id"), nullable=False)
    plan_snapshot = db.Column(db.JSON, nullable=True)
    billing_period = db.Column(db.String(10), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    installments = db.Column(db.Integer, nullable=False, default=1)
    credit_days = db.Column(db.Integer, nullable=False, default=0)

    process_id = db.Column(db.String(100), unique=True, nullable=True, index=True)
    process_token = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=CheckoutStatus.PENDING, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User", backref=db.backref("checkout_sessions", lazy="dynamic"))

    __table_args__ = (
        db.Index("idx_checkout_status_expiry", "status", "expires_at"),
    )

    def is_expired(self, now):
        return self.expires_at is not None and self.expires_at < now

    @classmethod
    def find_by_process_id(cls, process_id):
        if not process_id:
            return None
        return cls.query.filter_by(process_id=str(process_id)).first()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "billing_period": self.billing_period,
            "amount": self.amount,
            "installments": self.installments,
            "credit_days": self.credit_days,
            "process_id": self.process_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    def __repr__(self):
        return f"<CheckoutSession {self.process_id} {self.status}>"
