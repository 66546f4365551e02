"""Engine and transactional session scope shared by every service."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from creditcore.logging_config import get_logger
from creditcore.settings import settings
from creditcore.storage.models import Base, load_models, utcnow

logger = get_logger(__name__)

__all__ = ["Base", "Database", "db", "get_db", "lock_row", "utcnow"]

# Seconds a SQLite writer waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = 30


class Database:
    """Owns the engine; hands out one session per unit of work."""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.database_url

        connect_args = {}
        if self.database_url.startswith("sqlite"):
            # Pooled connections move between threads; concurrent writers queue on the file lock
            connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}

        self.engine = create_engine(self.database_url, pool_pre_ping=True, connect_args=connect_args)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        """Create every billing table that does not exist yet."""
        load_models()
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created", tables=len(Base.metadata.tables))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional scope: commit when the block exits, roll back on any error.

        A balance check and the mutation it guards belong in the same block.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        """True if the database answers a trivial query."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("database_ping_failed", error=str(e))
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def lock_row(session: Session, model: type[Base], row_id: int):
    """Load one row for update, holding its lock until the transaction ends.

    ``SELECT ... FOR UPDATE`` is a no-op on SQLite, so the row is first
    touched with a no-op UPDATE: a row lock elsewhere, the database write lock
    on SQLite. Call it before any other statement in the session.
    """
    session.query(model).filter(model.id == row_id).update(
        {model.id: model.id}, synchronize_session=False
    )
    return session.query(model).filter(model.id == row_id).with_for_update().first()


db = Database()


def get_db() -> Database:
    """FastAPI dependency; tests override it with their own database."""
    return db
