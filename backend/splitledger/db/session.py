"""
Database session management.
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker, Session
from splitledger.core.config import settings
from splitledger.core.exceptions import ServiceUnavailableError
from splitledger.db.base import Base

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_pre_ping=True,
    pool_recycle=3600,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session):
    """Run a block as one transaction: commit on success, roll back on any error.

    Connection-level failures surface as ServiceUnavailableError. Financial
    mutations are never retried here.
    """
    try:
        yield db
        db.commit()
    except (OperationalError, InterfaceError) as e:
        db.rollback()
        logger.error(f"Database unavailable, transaction rolled back: {e}")
        raise ServiceUnavailableError("Ledger temporarily unavailable") from e
    except Exception:
        db.rollback()
        raise


def init_db():
    """Initialize database tables."""
    import splitledger.models  # noqa: F401  registers every table on Base.metadata
    Base.metadata.create_all(bind=engine)
