"""
Pytest configuration and shared fixtures.
"""

import os
import tempfile
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOGS_DIR", str(Path(tempfile.gettempdir()) / "lieutime-test-logs"))

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lieutime.database import get_db, init_db
from lieutime.services.repositories import UserRepository

# Sunday
WEEK = date(2025, 1, 5)


def week_day(offset, week=WEEK):
    return week + timedelta(days=offset)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    UserRepository(db).get_or_create("alice")
    db.commit()
    return "alice"


@pytest.fixture
def other_user(db):
    UserRepository(db).get_or_create("bob")
    db.commit()
    return "bob"


@pytest.fixture
def admin(db):
    admin = UserRepository(db).get_or_create("root")
    admin.is_admin = True
    db.commit()
    return "root"


@pytest.fixture
def client(session_factory):
    from lieutime.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def week_entries():
    """45 hours across Monday-Friday of WEEK, as import rows."""
    return [{"date": week_day(offset).isoformat(), "hours": 9} for offset in range(1, 6)]
