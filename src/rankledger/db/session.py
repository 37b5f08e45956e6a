"""
Database session management for rankledger.

Provides SQLAlchemy engine and session factory with proper
connection pooling configuration. Uses the settings from config.py.

Usage:
    # As a context manager (recommended for scripts)
    from rankledger.db import get_session

    with get_session() as session:
        players = session.query(Player).all()
        # Commits automatically on exit, rolls back on exception

    # As a factory for worker threads
    from rankledger.db import get_session_factory

    session = get_session_factory()()
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from rankledger.config import settings


def get_engine() -> Engine:
    """
    Create SQLAlchemy engine with connection pooling.

    The engine is configured with:
    - Connection pool for efficient reuse (server databases only)
    - Echo mode disabled (set LOG_LEVEL=DEBUG for SQL logging)
    - Pre-ping to verify connections before use (handles stale connections)
    """
    kwargs = {
        "pool_pre_ping": True,
        "echo": settings.log_level == "DEBUG",
    }
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow

    return create_engine(settings.database_url, **kwargs)


# Created on first use so importing the models never needs a database driver
_engine = None


def _get_engine() -> Engine:
    """Get or create the singleton engine instance."""
    global _engine
    if _engine is None:
        _engine = get_engine()
        SessionLocal.configure(bind=_engine)
    return _engine


# Session factory - bound to the engine on first use
SessionLocal = sessionmaker(
    autoflush=False,  # Don't auto-flush before queries (more control)
)


def get_session_factory() -> sessionmaker:
    """Return SessionLocal bound to the engine (for worker threads that open their own sessions)."""
    _get_engine()
    return SessionLocal


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Automatically commits on successful exit, rolls back on exception.
    This is the recommended way to use sessions in scripts.

    Raises:
        Any exception from the database operation (after rollback)
    """
    _get_engine()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
