"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine and session factory used by the lead
    store, plus a context manager for scripts and the CLI.

WHY:
    A single engine/session is created here and handed down to
    `SqlLeadStore`; services never open their own connections.

USAGE:
    from app.database import get_sync_session
    from app.services.lead_store import SqlLeadStore

    with get_sync_session() as db:
        store = SqlLeadStore(db)
        ...

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/session_basics.html
    - app/services/lead_store.py (consumer of these sessions)
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .deps import get_settings


# =============================================================================
# ENGINE
# =============================================================================

def build_engine(database_url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite engines (tests, local dev) do not support pool_size/max_overflow,
    so they only get `check_same_thread=False`.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )


def _get_database_url() -> str:
    """DATABASE_URL from settings, loading a local .env first.

    Runs before the first get_settings() call so values from .env reach
    the cached settings.
    """
    from app.utils.env import load_env_file
    load_env_file()
    return get_settings().DATABASE_URL


DATABASE_URL = _get_database_url()

engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in app.models to ensure a single registry across the app
from .models import Base  # noqa: E402


def init_db() -> None:
    """Create tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)


# =============================================================================
# CONTEXT MANAGERS
# =============================================================================

@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions outside a request cycle.

    Yields:
        SQLAlchemy Session instance

    Example:
        with get_sync_session() as db:
            leads = db.query(Lead).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
