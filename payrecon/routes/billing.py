# payrecon/routes/billing.py
import logging

from flask import Blueprint, current_app, jsonify, request

from payrecon.billing.checkout import CheckoutSessionManager
from payrecon.errors import ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint("billing", __name__, url_prefix="/api/billing")


def get_checkout_manager():
    manager = current_app.extensions.get("checkout_manager")
    if manager is None:
        manager = CheckoutSessionManager()
    return manager


@bp.route("/checkout", methods=["POST"])
def create_checkout():
    """
    Start a hosted payment page for a plan purchase.

    Body: userId, planId, billingPeriod, installments?, successUrl?, cancelUrl?
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    result = get_checkout_manager().create_checkout_process(
        user_id=body.get("userId"),
        plan_id=body.get("planId"),
        billing_period=body.get("billingPeriod"),
        installments=body.get("installments", 1),
        success_url=body.get("successUrl"),
        cancel_url=body.get("cancelUrl"),
    )
    return jsonify(result.to_dict()), 201
