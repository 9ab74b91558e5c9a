# payrecon/notifications/service.py
import logging

from sqlalchemy.exc import SQLAlchemyError

from payrecon.extensions import db
from payrecon.models import AdminAlert, PaymentNotification
from payrecon.utils import utcnow

logger = logging.getLogger(__name__)


class NotificationType:
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_DOWNGRADED = "subscription_downgraded"


class NotificationService:
    """Queue user-facing notifications in the outbox table"""

    @staticmethod
    def send_notification(user_id, notification_type, data=None, channel="email"):
        """Stage an outbox row in the current session; the caller commits."""
        notification = PaymentNotification(
            user_id=user_id,
            notification_type=notification_type,
            channel=channel,
            status="pending",
            data=data or {},
            scheduled_for=utcnow(),
        )
        db.session.add(notification)
        logger.info(
            "Notification queued",
            extra={"user_id": user_id, "notification_type": notification_type},
        )
        return notification


class AlertService:
    """Write admin alerts for humans to review"""

    @staticmethod
    def raise_alert(alert_type, title, description=None, severity="medium", user_id=None, data=None, commit=False):
        alert = AdminAlert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            description=description or title,
            data=data or {},
            user_id=user_id,
            status="open",
        )
        db.session.add(alert)
        logger.warning(
            f"Admin alert raised: {alert_type}",
            extra={"alert_type": alert_type, "severity": severity, "user_id": user_id},
        )
        if commit:
            AlertService._commit(alert_type)
        return alert

    @staticmethod
    def _commit(alert_type):
        # Alerting never blocks webhook acknowledgement
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to persist admin alert", extra={"alert_type": alert_type})
