"""Notification delivery for billing events."""

import httpx
from pydantic import BaseModel

from creditcore.logging_config import get_logger
from creditcore.settings import settings

logger = get_logger(__name__)


class Notification(BaseModel):
    """A message addressed to one client about one entity."""
    recipient_id: int
    content: str
    entity_type: str
    entity_id: int | None = None


class NotificationService:
    """Best-effort notifier.

    Posts notifications as JSON to the configured webhook. Without a webhook
    the notification is only logged. Delivery problems are logged and
    reported through the return value, never raised.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize notification service."""
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout or settings.notification_timeout_seconds
        self.transport = transport
        self.enabled = bool(self.webhook_url)

    def notify(self, notification: Notification) -> bool:
        """Deliver a notification.

        Returns:
            True if the webhook accepted it, False otherwise
        """
        if not self.enabled:
            logger.info(
                "notification_logged",
                recipient_id=notification.recipient_id,
                entity_type=notification.entity_type,
                entity_id=notification.entity_id,
                content=notification.content,
            )
            return False

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.webhook_url, json=notification.model_dump())

            if response.is_success:
                logger.info(
                    "notification_sent",
                    recipient_id=notification.recipient_id,
                    entity_type=notification.entity_type,
                )
                return True

            logger.error(
                "notification_send_failed",
                recipient_id=notification.recipient_id,
                status=response.status_code,
                body=response.text[:200],
            )
            return False

        except httpx.HTTPError as e:
            logger.error("notification_send_error", recipient_id=notification.recipient_id, error=str(e))
            return False

    def send_referral_reward(self, client_id: int, referral_id: int, credits: int) -> bool:
        return self.notify(Notification(
            recipient_id=client_id,
            content=f"You earned {credits} referral credits",
            entity_type="referral",
            entity_id=referral_id,
        ))

    def send_low_credits(self, client_id: int, subscription_id: int, remaining: int, total: int) -> bool:
        return self.notify(Notification(
            recipient_id=client_id,
            content=f"Only {remaining} of {total} credits left in this period",
            entity_type="subscription",
            entity_id=subscription_id,
        ))


# Singleton instance
notification_service = NotificationService()
