# payrecon/workers/sweeper.py
import logging

from flask import current_app

from payrecon.billing.state_machine import SubscriptionStateMachine
from payrecon.extensions import db
from payrecon.models import CheckoutSession, CheckoutStatus, Transaction, User
from payrecon.utils import utcnow

logger = logging.getLogger(__name__)


class Sweeper:
    """Periodic maintenance: grace period expiry and abandoned checkouts."""

    def __init__(self, state_machine=None, config=None):
        self.config = config if config is not None else current_app.config
        self.state_machine = state_machine or SubscriptionStateMachine(self.config)

    def expire_grace_periods(self, now=None):
        count = self.state_machine.expire_grace_periods(now or utcnow())
        logger.info("Grace period sweep finished", extra={"downgraded": count})
        return count

    def _has_transaction(self, process_id):
        return process_id is not None and Transaction.query.filter_by(process_id=process_id).first() is not None

    def cleanup_abandoned_checkouts(self, now=None):
        """
        Mark expired pending sessions abandoned unless a transaction for
        the same process exists (the webhook may simply have been missed).
        """
        now = now or utcnow()
        stale = (
            db.session.query(CheckoutSession.id, CheckoutSession.user_id, CheckoutSession.process_id)
            .filter(
                CheckoutSession.status == CheckoutStatus.PENDING,
                CheckoutSession.expires_at < now,
            )
            .order_by(CheckoutSession.expires_at)
            .all()
        )

        abandoned = 0
        for session_id, user_id, process_id in stale:
            if self._has_transaction(process_id):
                logger.warning(
                    "Expired checkout has a transaction, leaving it for review",
                    extra={"process_id": process_id},
                )
                continue

            # Only a session still pending may become abandoned
            updated = CheckoutSession.query.filter(
                CheckoutSession.id == session_id,
                CheckoutSession.status == CheckoutStatus.PENDING,
            ).update({"status": CheckoutStatus.ABANDONED}, synchronize_session=False)
            if updated != 1:
                db.session.rollback()
                logger.info("Checkout left pending during sweep, skipping", extra={"process_id": process_id})
                continue

            user = db.session.get(User, user_id)
            if user is not None:
                user.clear_pending_checkout()
            db.session.commit()
            abandoned += 1
            logger.info("Checkout marked as abandoned", extra={"process_id": process_id})

        return abandoned
