"""
Pytest configuration and fixtures for BuildLens tests.

Provides an in-memory SQLite database, per-test rolled-back sessions,
a fixed clock and helpers for seeding the record store.
"""

import os

# Settings are read at import time; point them at SQLite and keep the
# test run from starting threads or writing log files.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("BACKGROUND_TASKS_ENABLED", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")

from contextlib import contextmanager  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any, Generator, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from buildlens.db.repositories.chat_message import ChatMessageRepository  # noqa: E402
from buildlens.models.db import Base, MessageKind  # noqa: E402

# Monday, 2 June 2025, noon UTC
NOW = datetime(2025, 6, 2, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},  # TestClient runs in another thread
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test gets a fresh session inside a transaction that is rolled
    back after the test completes.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection)()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_session: Session):
    """Context-manager factory handing out the test session."""

    @contextmanager
    def factory() -> Generator[Session, None, None]:
        yield db_session
        db_session.flush()

    return factory


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def add_message(db_session: Session):
    """Append a message; ``minutes_ago`` is relative to NOW."""
    repository = ChatMessageRepository(db_session)

    def _add(
        conversation_id: str,
        build_number: int,
        content: Any,
        kind: MessageKind = MessageKind.ASSISTANT,
        minutes_ago: float = 0,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        return repository.append(
            conversation_id,
            build_number,
            kind,
            content,
            metadata=metadata,
            timestamp=NOW - timedelta(minutes=minutes_ago),
        )

    return _add


@pytest.fixture
def api_client(db_session: Session):
    """Create a test client for FastAPI with database dependency override."""
    from fastapi.testclient import TestClient

    from buildlens.api.app import app
    from buildlens.db.connection import get_db

    def override_get_db():
        try:
            yield db_session
            db_session.flush()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    for attr in ("jenkins_client", "snapshot_cache", "background"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)
