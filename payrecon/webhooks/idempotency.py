# payrecon/webhooks/idempotency.py
"""
Idempotency ledger operations.

The unique index on ``webhook_events.idempotency_key`` is the only
serialization point between concurrent deliveries of one transaction.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from payrecon.errors import NotFoundError, ReconciliationError
from payrecon.extensions import db
from payrecon.models import WebhookEvent, WebhookEventStatus
from payrecon.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Claim:
    claimed: bool
    existing_status: Optional[str] = None
    reclaimed: bool = False


def _reclaim(idempotency_key):
    """Single-winner conditional update of a retryable failed row."""
    updated = (
        WebhookEvent.query.filter(
            WebhookEvent.idempotency_key == idempotency_key,
            WebhookEvent.status == WebhookEventStatus.FAILED,
            WebhookEvent.retryable.is_(True),
        ).update(
            {
                "status": WebhookEventStatus.PROCESSING,
                "retryable": False,
                "processed_at": None,
                "received_at": utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.session.commit()
    return updated == 1


def _find_event(idempotency_key):
    return WebhookEvent.query.filter_by(idempotency_key=idempotency_key).first()


def claim_event(idempotency_key, source="grow"):
    existing = _find_event(idempotency_key)
    if existing is not None:
        if existing.is_retryable and _reclaim(idempotency_key):
            logger.info("Reclaimed failed webhook event", extra={"idempotency_key": idempotency_key})
            return Claim(claimed=True, existing_status=WebhookEventStatus.FAILED, reclaimed=True)
        return Claim(claimed=False, existing_status=existing.status)

    db.session.add(
        WebhookEvent(
            idempotency_key=idempotency_key,
            source=source,
            status=WebhookEventStatus.PROCESSING,
            received_at=utcnow(),
        )
    )
    try:
        db.session.commit()
    except IntegrityError:
        # Another delivery inserted the key first
        db.session.rollback()
        logger.info("Concurrent webhook delivery lost the claim", extra={"idempotency_key": idempotency_key})
        return Claim(claimed=False, existing_status=WebhookEventStatus.PROCESSING)

    return Claim(claimed=True)


def mark_event(idempotency_key, status, result=None, retryable=False):
    """Stage the ledger outcome; committed with the caller's unit of work."""
    if not idempotency_key:
        return None
    event = _find_event(idempotency_key)
    if event is None:
        return None
    event.status = status
    event.processed_at = utcnow()
    event.result = result
    event.retryable = retryable
    return event


def get_event(idempotency_key):
    event = _find_event(idempotency_key)
    if event is None:
        raise NotFoundError(f"No webhook event for key {idempotency_key}")
    return event


def mark_retryable(idempotency_key):
    """Allow the next delivery of a failed event to be processed again."""
    event = get_event(idempotency_key)
    if event.status != WebhookEventStatus.FAILED:
        raise ReconciliationError(
            f"Only failed events can be retried (status is {event.status})"
        )
    event.retryable = True
    event.result = {**(event.result or {}), "retryable": True}
    db.session.commit()
    logger.info("Webhook event marked retryable", extra={"idempotency_key": idempotency_key})
    return event
