"""Declarative base shared by every billing table."""

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def load_models() -> None:
    """Import every model module so its tables register on ``Base.metadata``."""
    from creditcore.accounts import models as _accounts  # noqa: F401
    from creditcore.catalog import models as _catalog  # noqa: F401
    from creditcore.discounts import models as _discounts  # noqa: F401
    from creditcore.ledger import models as _ledger  # noqa: F401
    from creditcore.payments import models as _payments  # noqa: F401
    from creditcore.referral import models as _referral  # noqa: F401
    from creditcore.subscriptions import models as _subscriptions  # noqa: F401
