"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from refledger.exceptions import TransactionAbortError
from refledger.logging_config import get_logger
from refledger.settings import settings
from refledger.storage.models import Base, utcnow

logger = get_logger(__name__)

__all__ = ["Base", "Database", "db", "utcnow"]


def _connect_args(database_url: str, timeout: float) -> dict:
    """Driver arguments that bound how long a transaction may wait on locks."""
    if database_url.startswith("sqlite"):
        # Sessions are handed out to request threads
        return {"check_same_thread": False, "timeout": timeout}
    if database_url.startswith("postgresql"):
        return {"options": f"-c lock_timeout={int(timeout * 1000)}"}
    return {}


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
        """
        self.database_url = database_url or settings.database_url
        self.engine = create_engine(
            self.database_url,
            echo=settings.env == "development",
            pool_pre_ping=True,
            connect_args=_connect_args(self.database_url, settings.database_timeout_seconds),
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def create_tables(self) -> None:
        """Create all tables in the database."""
        # Mapped classes register themselves on Base.metadata when imported
        from refledger.auth import models as _auth_models  # noqa: F401
        from refledger.ledger import models as _ledger_models  # noqa: F401
        from refledger.purchases import models as _purchase_models  # noqa: F401
        from refledger.referral import models as _referral_models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Every write inside the block commits together or not at all. Lock
        timeouts and serialization failures surface as TransactionAbortError.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            logger.warning("transaction_aborted", error=str(e.orig))
            raise TransactionAbortError("Transaction could not be committed, please retry") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
