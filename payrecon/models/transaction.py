import uuid
from datetime import datetime

from payrecon.extensions import db


class TransactionStatus:
    COMPLETED = "completed"
    PENDING_REVIEW = "pending_review"


class Transaction(db.Model):
    """Append-only record of a payment reported by the processor."""

    __tablename__ = "transactions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    plan_id = db.Column(db.String(36), nullable=True)

    transaction_id = db.Column(db.String(100), nullable=True, index=True)
    process_id = db.Column(db.String(100), nullable=True, index=True)
    asmachta = db.Column(db.String(100), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(30), nullable=True)
    card_suffix = db.Column(db.String(4), nullable=True)
    card_brand = db.Column(db.String(30), nullable=True)

    status = db.Column(db.String(20), nullable=False)
    status_code = db.Column(db.String(5), nullable=True)
    billing_period = db.Column(db.String(10), nullable=True)
    description = db.Column(db.String(500), nullable=True)
    raw_payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index("idx_transaction_user_created", "user_id", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transaction_id": self.transaction_id,
            "process_id": self.process_id,
            "amount": str(self.amount),
            "payment_method": self.payment_method,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
