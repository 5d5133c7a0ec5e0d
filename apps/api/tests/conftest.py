"""
Pytest configuration and fixtures

Every test gets its own in-memory SQLite database built from the models, so
nothing leaks between tests. Repository code opens and commits its own
sessions; StaticPool keeps them all on the same connection.
"""
import pytest
import sys
import os

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Never let tests reach a real Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INTERVALS_ICU_API_KEY", "test-key")

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from core.database import Base, build_session_factory
import models  # noqa: F401
from services.intervals_repository import SqlAlchemyIntervalsRepository
from fixtures.intervals_fixtures import FakeIntervalsGateway


@pytest.fixture(scope="function")
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def repository(session_factory):
    return SqlAlchemyIntervalsRepository(session_factory=session_factory)


@pytest.fixture
def gateway():
    return FakeIntervalsGateway()
