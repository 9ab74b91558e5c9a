import hmac
import logging
from functools import wraps

from flask import abort, current_app, request

logger = logging.getLogger(__name__)


def client_ip():
    """Peer address. Forwarded headers only count once ProxyFix has applied them."""
    return request.remote_addr or ""


def admin_token_required(view):
    """Operator endpoints require the shared X-Admin-Token header."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_TOKEN")
        supplied = request.headers.get("X-Admin-Token", "")
        if not expected or not hmac.compare_digest(expected.encode(), supplied.encode()):
            logger.warning("Admin access denied", extra={"path": request.path, "ip": client_ip()})
            abort(403)
        return view(*args, **kwargs)

    return wrapper
