"""Client account model.

Client records are owned by the marketplace's user management layer; the
billing engine only reads them and maintains the shareable referral code.
"""

from sqlalchemy import Column, DateTime, Integer, String

from creditcore.storage.db import Base, utcnow


class Client(Base):
    """Marketplace client (the paying party of a subscription)."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)

    # Shareable code resolved on referral link clicks
    referral_code = Column(String(20), unique=True, nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Client(id={self.id}, email={self.email})>"
