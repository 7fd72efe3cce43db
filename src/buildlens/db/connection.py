"""
Database connection management for BuildLens.

Provides database session management, connection handling, and transaction support.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from buildlens.config import settings
from buildlens.models.db import Base

logger = logging.getLogger(__name__)

_is_sqlite = settings.database_url.startswith("sqlite")

if _is_sqlite:
    _memory = ":memory:" in settings.database_url or settings.database_url in (
        "sqlite://",
        "sqlite:///",
    )
    engine = create_engine(
        settings.database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        # In-memory databases exist per connection; share one across threads
        poolclass=StaticPool if _memory else None,
        pool_pre_ping=True,
    )
else:
    # Total connections = workers x (pool_size + max_overflow)
    engine = create_engine(
        settings.database_url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_pre_ping=True,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )

# Background engine with NullPool so the sync orchestrator, retention pass
# and view refresher never compete with API requests for pooled connections.
if _is_sqlite:
    background_engine = engine
else:
    background_engine = create_engine(
        settings.database_url,
        echo=False,
        poolclass=NullPool,
    )

# Session factory for API requests (pooled connections)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Session factory for background workers (NullPool)
BackgroundSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=background_engine,
)

# SQLite deployments and test runs have no migration step
if _is_sqlite:
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database sessions with automatic cleanup.

    Yields:
        Session: A SQLAlchemy session
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Uses the pooled connection engine - suitable for API requests.

    Example:
        >>> with db_session() as db:
        >>>     repo = ChatMessageRepository(db)
        >>>     repo.distinct_conversation_ids()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def background_session() -> Generator[Session, None, None]:
    """
    Context manager for background worker database sessions.

    Uses the NullPool engine - creates a fresh connection each time.

    Use this for:
    - Sync orchestrator reconciliation
    - Scheduled retention passes
    - Precomputed view refreshes
    """
    session = BackgroundSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
