"""Client accounts referenced by the billing engine."""

from creditcore.accounts.models import Client

__all__ = ["Client"]
