from payrecon.notifications.service import AlertService, NotificationService

__all__ = ["AlertService", "NotificationService"]
