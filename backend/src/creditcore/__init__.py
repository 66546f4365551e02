"""Credit ledger and subscription billing engine."""

__version__ = "1.0.0"
