# payrecon/models/admin_alert.py
from datetime import datetime

from payrecon.extensions import db


class AdminAlert(db.Model):
    __tablename__ = "admin_alerts"

    id = db.Column(db.Integer, primary_key=True)
    alert_type = db.Column(db.String(50), nullable=False, index=True)  # amount_mismatch, potential_double_payment, etc.
    severity = db.Column(db.String(20), nullable=False, default="medium")  # low, medium, high
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=True, default=dict)
    user_id = db.Column(db.String(36), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default="open")

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        """Convert alert to dictionary"""
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "title": self.title,
            "description": self.description,
            "data": self.data,
            "user_id": self.user_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def create_amount_mismatch_alert(cls, user_id, process_id, expected, received):
        alert = cls(
            alert_type="amount_mismatch",
            severity="high",
            title="Payment amount mismatch",
            description=f"Webhook amount {received} does not match checkout amount {expected}",
            data={"process_id": process_id, "expected": str(expected), "received": str(received)},
            user_id=user_id,
        )
        db.session.add(alert)
        return alert

    @classmethod
    def create_double_payment_alert(cls, user_id, transaction_id, previous_transaction_id):
        alert = cls(
            alert_type="potential_double_payment",
            severity="high",
            title="Potential double payment",
            description=f"User {user_id} paid again within the review window",
            data={
                "transaction_id": transaction_id,
                "previous_transaction_id": previous_transaction_id,
            },
            user_id=user_id,
        )
        db.session.add(alert)
        return alert
