from datetime import datetime

from payrecon.extensions import db


class WebhookEventStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookEvent(db.Model):
    """Idempotency ledger. The unique key is what serializes deliveries."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    idempotency_key = db.Column(db.String(150), unique=True, nullable=False)
    source = db.Column(db.String(30), nullable=False, default="grow")
    status = db.Column(db.String(20), nullable=False, default=WebhookEventStatus.PROCESSING)
    received_at = db.Column(db.DateTime, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime, nullable=True)
    result = db.Column(db.JSON, nullable=True)
    # Set when an uncaught error aborted processing; a later delivery may reclaim the row
    retryable = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.Index("idx_webhook_source_status", "source", "status"),
    )

    @property
    def is_retryable(self):
        return self.status == WebhookEventStatus.FAILED and bool(self.retryable)

    def to_dict(self):
        return {
            "idempotency_key": self.idempotency_key,
            "source": self.source,
            "status": self.status,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "result": self.result,
            "retryable": bool(self.retryable),
        }

    def __repr__(self):
        return f"<WebhookEvent {self.idempotency_key} {self.status}>"
