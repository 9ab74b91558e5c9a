# payrecon/routes/webhooks.py
"""
Grow notify URL and operator views of the idempotency ledger.

The processor gets a 200 for anything it should not resend, 401 for a
bad signature and a 5xx when processing crashed so it retries.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from payrecon.errors import PayloadError, SecurityRejection
from payrecon.routes.guards import admin_token_required, client_ip
from payrecon.utils import utcnow
from payrecon.webhooks.engine import WebhookIngestionEngine
from payrecon.webhooks.idempotency import get_event, mark_retryable
from payrecon.webhooks.security import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


def get_webhook_engine():
    engine = current_app.extensions.get("webhook_engine")
    if engine is None:
        engine = WebhookIngestionEngine()
        current_app.extensions["webhook_engine"] = engine
    return engine


@bp.route("/grow", methods=["POST"])
def grow_webhook():
    started = time.monotonic()
    ip = client_ip()

    whitelist = current_app.config.get("GROW_IP_WHITELIST") or []
    if whitelist and ip not in whitelist:
        logger.warning("Webhook rejected - IP not whitelisted", extra={"ip": ip})
        return jsonify({"error": "Forbidden"}), 403

    signature = request.headers.get(SIGNATURE_HEADER)
    logger.info(
        "Grow webhook received",
        extra={"ip": ip, "content_type": request.content_type, "has_signature": bool(signature)},
    )

    try:
        result = get_webhook_engine().process(request.get_data(), signature)
    except SecurityRejection as e:
        logger.warning("Grow webhook signature verification failed", extra={"ip": ip, "reason": e.message})
        return jsonify({"error": "Invalid signature"}), 401
    except PayloadError as e:
        # Acknowledge so the processor stops resending a body we cannot read
        logger.error("Grow webhook parse error", extra={"reason": e.message})
        return jsonify({"received": True, "processed": False, "error": "Invalid payload format"}), 200

    if result.rate_limited:
        return jsonify({"error": "Rate limit exceeded", "retry_after": 60}), 429

    logger.info(
        "Grow webhook processed",
        extra={
            "result": result.to_dict(),
            "duration_ms": round((time.monotonic() - started) * 1000, 2),
        },
    )
    return jsonify(result.to_response()), 200


@bp.route("/grow/health", methods=["GET"])
def grow_webhook_health():
    return jsonify({
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "service": "grow-webhook",
    })


@bp.route("/grow/events/<idempotency_key>", methods=["GET"])
@admin_token_required
def webhook_event_status(idempotency_key):
    return jsonify(get_event(idempotency_key).to_dict())


@bp.route("/grow/events/<idempotency_key>/retry", methods=["POST"])
@admin_token_required
def retry_webhook_event(idempotency_key):
    event = mark_retryable(idempotency_key)
    return jsonify(event.to_dict())
