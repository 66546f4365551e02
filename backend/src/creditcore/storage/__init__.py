"""Relational storage for the billing engine."""

from creditcore.storage.db import Base, Database, db, get_db, utcnow

__all__ = ["Base", "Database", "db", "get_db", "utcnow"]
