"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine and session factory.
    Exposes the FastAPI dependency and a context manager for workers.

WHY:
    - Routers, arq jobs and the scheduler all share one session factory
    - Reconciliation is sync ORM code; async entrypoints call it directly
      between their network awaits

USAGE:
    from shopsync.database import SessionLocal, get_db

    @router.post("/items")
    def create_item(db: Session = Depends(get_db)):
        ...

    with get_sync_session() as db:
        ...

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/session_basics.html
    - shopsync/routers/ (consumers of these sessions)
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shopsync.utils.env import build_database_url


# =============================================================================
# ENGINE
# =============================================================================

DATABASE_URL = build_database_url()

# NOTE: SQLite (tests/dev) does not support pool_size/max_overflow. In-memory
# SQLite needs a single shared connection or every thread sees an empty DB.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in DATABASE_URL else None,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in shopsync.models to ensure a single registry across the app
from .models import Base  # noqa: E402


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# CONTEXT MANAGERS (for non-FastAPI usage)
# =============================================================================

@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions outside FastAPI (arq jobs, scheduler).

    Example:
        with get_sync_session() as db:
            result = await full_sync(db, tenant_id)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Used by local dev startup and tests."""
    Base.metadata.create_all(bind=engine)
