"""Best-effort notifications."""

from creditcore.notifications.service import Notification, NotificationService, notification_service

__all__ = ["Notification", "NotificationService", "notification_service"]
