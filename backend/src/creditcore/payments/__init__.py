"""Payment gateway event handling."""

from creditcore.payments.models import ProcessedPaymentEvent

__all__ = ["ProcessedPaymentEvent"]
