from datetime import datetime

from payrecon.extensions import db


class PaymentNotification(db.Model):
    """Outbox row; delivery happens outside this service."""

    __tablename__ = "payment_notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    notification_type = db.Column(db.String(50), nullable=False)
    channel = db.Column(db.String(20), nullable=False, default="email")
    status = db.Column(db.String(20), nullable=False, default="pending")
    data = db.Column(db.JSON, nullable=True, default=dict)
    scheduled_for = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
