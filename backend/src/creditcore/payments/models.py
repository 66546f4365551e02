"""Payment event bookkeeping."""

from sqlalchemy import Column, DateTime, Integer, String

from creditcore.storage.db import Base, utcnow


class ProcessedPaymentEvent(Base):
    """Tracks handled payment gateway events for idempotency.

    Stored in the database so redelivered events are skipped across restarts
    and processes.
    """
    __tablename__ = "processed_payment_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)  # e.g., "invoice.paid"
    source = Column(String(50), nullable=False)  # e.g., "gateway"
    processed_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<ProcessedPaymentEvent(id={self.event_id}, type={self.event_type})>"
