"""Payment gateway events mapped onto subscription operations.

Payloads arrive already verified by the gateway integration. Each event is
handled at most once, keyed by its gateway event id.
"""

from datetime import timedelta
from typing import Any, Callable

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creditcore.logging_config import get_logger
from creditcore.payments.models import ProcessedPaymentEvent
from creditcore.storage.db import Database, db, utcnow
from creditcore.subscriptions.service import SubscriptionService

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.completed"
INVOICE_PAID = "invoice.paid"


class PaymentEventHandler:
    """Dispatches payment events to the subscription lifecycle.

    - ``checkout.completed``: opens a subscription and allocates its credits
    - ``invoice.paid``: renews the subscription and allocates its credits
    """

    def __init__(
        self,
        database: Database | None = None,
        subscription_service: SubscriptionService | None = None,
        source: str = "gateway",
    ):
        self.db = database or db
        self.subscriptions = subscription_service or SubscriptionService(self.db)
        self.source = source
        self.logger = get_logger(__name__)

    def is_event_processed(self, event_id: str) -> bool:
        with self.db.session() as session:
            existing = session.query(ProcessedPaymentEvent).filter(
                ProcessedPaymentEvent.event_id == event_id,
                ProcessedPaymentEvent.source == self.source,
            ).first()
            return existing is not None

    def mark_event_processed(self, event_id: str, event_type: str) -> None:
        with self.db.session() as session:
            session.add(ProcessedPaymentEvent(
                event_id=event_id,
                event_type=event_type,
                source=self.source,
                processed_at=utcnow(),
            ))

    def cleanup_old_events(self, days: int = 30) -> int:
        """Remove processed-event markers older than ``days``.

        Returns:
            Number of deleted markers
        """
        cutoff = utcnow() - timedelta(days=days)
        with self.db.session() as session:
            return session.query(ProcessedPaymentEvent).filter(
                ProcessedPaymentEvent.processed_at < cutoff
            ).delete()

    def handle(self, event: dict[str, Any]) -> dict[str, Any]:
        """Handle one verified payment event.

        The processed marker is inserted first, in the same transaction as the
        subscription changes. A failure rolls both back so the event can be
        redelivered; a concurrent delivery of the same event loses on the
        marker's unique constraint.

        Args:
            event: ``{"id": ..., "type": ..., "data": {...}}``

        Returns:
            Dict with the outcome (``processed``, ``duplicate`` or ``ignored``)
        """
        event_id = event["id"]
        event_type = event["type"]
        data = event.get("data", {})

        handlers: dict[str, Callable[[Session, dict[str, Any]], dict[str, Any]]] = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            INVOICE_PAID: self._handle_invoice_paid,
        }

        with structlog.contextvars.bound_contextvars(event_id=event_id, event_type=event_type):
            handler = handlers.get(event_type)
            if handler is None:
                self.logger.info("payment_event_ignored")
                return {"status": "ignored", "event_id": event_id}

            with self.db.session() as session:
                session.add(ProcessedPaymentEvent(
                    event_id=event_id,
                    event_type=event_type,
                    source=self.source,
                    processed_at=utcnow(),
                ))
                try:
                    session.flush()
                except IntegrityError:
                    session.rollback()
                    self.logger.info("payment_event_duplicate")
                    return {"status": "duplicate", "event_id": event_id}

                result = handler(session, data)

            self.logger.info("payment_event_processed", **result)
        return {"status": "processed", "event_id": event_id, **result}

    def _handle_checkout_completed(self, session: Session, data: dict[str, Any]) -> dict[str, Any]:
        subscription = self.subscriptions.add_subscription(
            session,
            client_id=int(data["client_id"]),
            plan_id=int(data["plan_id"]),
            price_id=data.get("price_id"),
        )
        credits = data.get("credits")
        if credits:
            self.subscriptions.apply_allocation(
                session, subscription.id, int(credits), description="Checkout completed"
            )
        return {"subscription_id": subscription.id}

    def _handle_invoice_paid(self, session: Session, data: dict[str, Any]) -> dict[str, Any]:
        subscription_id = int(data["subscription_id"])
        self.subscriptions.apply_renewal(session, subscription_id)
        credits = data.get("credits")
        if credits:
            self.subscriptions.apply_allocation(
                session, subscription_id, int(credits), description="Invoice paid"
            )
        return {"subscription_id": subscription_id}
