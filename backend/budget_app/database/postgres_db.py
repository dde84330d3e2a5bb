"""
PostgreSQL Database Connection and Session Management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager
from typing import Generator
import logging

from budget_app.database.models import Base

logger = logging.getLogger(__name__)

# Global engine and session factory
engine = None
SessionLocal = None
_is_initialized = False


def init_db(database_url: str, **engine_kwargs):
    """
    Initialize the database connection and create tables.

    Args:
        database_url: SQLAlchemy connection URL (PostgreSQL in production)
        engine_kwargs: Extra arguments passed to create_engine
    """
    global engine, SessionLocal, _is_initialized

    logger.info("Initializing database connection...")

    engine_kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(database_url, echo=False, **engine_kwargs)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized successfully")
    _is_initialized = True


def ensure_db_initialized():
    """Lazily initialize the database connection if it hasn't been set up yet."""
    if _is_initialized and SessionLocal is not None:
        return
    from budget_app.config import settings
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set to use database storage")
    init_db(settings.DATABASE_URL)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database session.

    Yields:
        Database session
    """
    ensure_db_initialized()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context():
    """
    Context manager for database sessions outside of FastAPI.

    Usage:
        with get_db_context() as db:
            account = db.query(PlaidAccount).first()

    Yields:
        Database session
    """
    ensure_db_initialized()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def close_db():
    """Close database connection."""
    global engine, SessionLocal, _is_initialized
    if engine:
        engine.dispose()
        logger.info("Database connection closed")
    engine = None
    SessionLocal = None
    _is_initialized = False
