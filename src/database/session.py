"""
Database Session Management

Engine and session lifecycle for the cost event log.
PostgreSQL in production, SQLite for local runs and tests.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from src.utils.config import get_settings

from .models import Base

logger = logging.getLogger(__name__)

# =============================================================================
# ENGINE
# =============================================================================

def get_database_url() -> str:
    """DATABASE_URL normalized for SQLAlchemy, or a local SQLite file."""
    settings = get_settings()
    url = settings.DATABASE_URL

    if not url:
        logger.warning(f"No DATABASE_URL configured, using SQLite: {settings.SQLITE_PATH}")
        return f"sqlite:///{settings.SQLITE_PATH}"

    # Hosted providers hand out postgres:// URLs
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def create_db_engine(url: Optional[str] = None) -> Engine:
    """
    Pooled engine for PostgreSQL; thread-shared engine for SQLite.

    The cost log is written from the event loop thread and read by the
    API threadpool, hence check_same_thread=False.
    """
    url = url or get_database_url()
    echo = get_settings().SQL_DEBUG

    if url.startswith("postgresql"):
        logger.info("Creating PostgreSQL engine")
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            echo=echo,
        )

    logger.info("Creating SQLite engine")
    return create_engine(url, connect_args={"check_same_thread": False}, echo=echo)


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


# =============================================================================
# SESSIONS
# =============================================================================

_SessionLocal: Optional[sessionmaker] = None


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Shared session factory, or a dedicated one for an explicit engine."""
    global _SessionLocal
    if engine is not None:
        return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


@contextmanager
def get_db_context(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Transactional session scope: commit on success, rollback on error.

    Usage:
        with get_db_context() as db:
            db.add(record)
    """
    db = (session_factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# INITIALIZATION
# =============================================================================

def init_db(engine: Optional[Engine] = None) -> None:
    """Create the cost event table if missing."""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")


def check_db_connection(engine: Optional[Engine] = None) -> bool:
    """True when a trivial query succeeds."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
    return True
