"""
Pytest configuration and fixtures

Unit tests run against the in-memory fakes in fixtures/fake_stores.py.
SQL store tests get a fresh in-memory sqlite schema per test, so nothing
leaks between tests.
"""
import pytest
import sys
import os

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Must be set before core.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("BATCH_USER_DELAY_S", "0")

from core.database import Base, SessionLocal, engine, init_db  # noqa: E402

from fixtures.activity_fixtures import SATURDAY_NIGHT, USER_ID  # noqa: E402
from fixtures.fake_stores import (  # noqa: E402
    FakeActivityRepository,
    FakeActivityWriter,
    FakeCorrelationStore,
    FakeNotificationStore,
    FakePatternStore,
    FakePredictionStore,
    FakeSuggestionStore,
    FakeUserDirectory,
)
from services.behavior_engine import BehaviorEngine  # noqa: E402


@pytest.fixture(scope="function")
def db_session():
    """
    Session over a freshly created schema.

    The stores commit per operation, so isolation comes from dropping every
    table after the test rather than from a wrapping transaction.
    """
    init_db()
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now():
    return SATURDAY_NIGHT


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def activity_repo():
    return FakeActivityRepository()


@pytest.fixture
def suggestion_store():
    return FakeSuggestionStore()


@pytest.fixture
def notification_store():
    return FakeNotificationStore()


@pytest.fixture
def pattern_store():
    return FakePatternStore()


@pytest.fixture
def prediction_store():
    return FakePredictionStore()


@pytest.fixture
def correlation_store():
    return FakeCorrelationStore()


@pytest.fixture
def activity_writer():
    return FakeActivityWriter()


@pytest.fixture
def user_directory():
    return FakeUserDirectory(opted_in=[USER_ID], active=[USER_ID])


@pytest.fixture
def behavior_engine(
    activity_repo,
    suggestion_store,
    notification_store,
    pattern_store,
    correlation_store,
    prediction_store,
    user_directory,
    activity_writer,
):
    return BehaviorEngine(
        activities=activity_repo,
        suggestion_store=suggestion_store,
        notification_store=notification_store,
        pattern_store=pattern_store,
        correlation_store=correlation_store,
        prediction_store=prediction_store,
        users=user_directory,
        activity_writer=activity_writer,
    )
