"""
Database connection and session management.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.pool import StaticPool
from typing import Generator, Optional
import logging
import time

from gmail_cleaner.core.config import get_settings

logger = logging.getLogger(__name__)

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def _engine_kwargs(database_url: str) -> dict:
    """Pool and driver options for the given backend."""
    if database_url.startswith("sqlite"):
        # Sessions are handed between the event loop and FastAPI's threadpool
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return kwargs

    settings = get_settings()
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_recycle": 3600,
        "connect_args": {"connect_timeout": 10},
    }


def init_db(database_url: Optional[str] = None, max_retries: int = 3, retry_delay: float = 1.0) -> Engine:
    """
    Initialize the database engine and session factory with retry logic.
    Call this once at application startup.

    Args:
        database_url: Override for settings.database_url
        max_retries: Number of connection attempts
        retry_delay: Seconds to wait between retries

    Returns:
        The initialized engine

    Raises:
        RuntimeError: If connection fails after all retries
    """
    global engine, SessionLocal

    url = database_url or get_settings().database_url

    for attempt in range(max_retries):
        try:
            engine = create_engine(url, echo=False, **_engine_kwargs(url))

            # Test connection
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

            logger.info(f"Database initialized: {url.split('@')[1] if '@' in url else url.split('://')[0]}")
            return engine

        except (OperationalError, DBAPIError) as e:
            logger.warning(f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}")
            if attempt < max_retries - 1:
                time.sleep(retry_delay * (attempt + 1))
            else:
                logger.error(f"Database initialization failed after {max_retries} attempts")
                raise RuntimeError(f"Failed to connect to database: {e}") from e

    raise RuntimeError("Database initialization skipped: max_retries must be >= 1")


def get_db() -> Generator[Session, None, None]:
    """
    Get a database session (FastAPI dependency and CLI helper).

    Usage:
        from gmail_cleaner.core.database import get_db

        db = next(get_db())
    """
    if not SessionLocal:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    db = SessionLocal()
    try:
        yield db
    except (OperationalError, DBAPIError) as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def create_tables():
    """
    Create all tables in the database.
    """
    if not engine:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    from .models import Base
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def drop_tables():
    """
    Drop all tables (DESTRUCTIVE - use with caution!).
    Only for development/testing.
    """
    if not engine:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    from .models import Base
    Base.metadata.drop_all(bind=engine)
    logger.warning("Database tables dropped")
