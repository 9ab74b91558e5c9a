import uuid
from datetime import datetime

from payrecon.extensions import db

BILLING_PERIODS = ("monthly", "yearly")


class Plan(db.Model):
    __tablename__ = "plans"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=True)
    monthly_price = db.Column(db.Integer, nullable=False, default=0)
    yearly_price = db.Column(db.Integer, nullable=True)
    max_installments = db.Column(db.Integer, nullable=False, default=12)
    features = db.Column(db.JSON, nullable=True, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def price_for(self, billing_period):
        """Whole-unit price for a billing period, or None when not sold that way."""
        if billing_period == "yearly":
            return self.yearly_price
        return self.monthly_price

    @classmethod
    def get_free_plan(cls, name="FREE"):
        return cls.query.filter(
            db.func.upper(cls.name) == name.upper(),
            cls.is_active.is_(True),
        ).first()

    def snapshot(self):
        """JSON-safe copy stored on checkout sessions."""
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "monthly_price": self.monthly_price,
            "yearly_price": self.yearly_price,
            "max_installments": self.max_installments,
            "features": self.features or {},
        }

    def __repr__(self):
        return f"<Plan {self.name}>"
