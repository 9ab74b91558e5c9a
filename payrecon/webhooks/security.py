import hashlib
import hmac
import logging

from payrecon.errors import SecurityRejection

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Grow-Signature"


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature, secret, production: bool):
    """
    HMAC-SHA256 check of the raw request body.

    Production requires both a configured secret and a valid signature.
    Elsewhere a missing secret disables the check, but a configured
    secret still demands a signature.
    """
    if not secret:
        if production:
            logger.error("Cannot verify webhook: GROW_WEBHOOK_SECRET not configured")
            raise SecurityRejection("Webhook secret not configured")
        logger.warning("Webhook signature verification skipped (no secret configured)")
        return True

    if not signature:
        logger.warning("Webhook rejected: missing signature")
        raise SecurityRejection("Missing signature")

    expected = compute_signature(payload, secret)
    if not hmac.compare_digest(expected.encode(), signature.strip().encode()):
        logger.warning("Webhook rejected: invalid signature")
        raise SecurityRejection("Invalid signature")

    return True
