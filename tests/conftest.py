import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CREATE_TABLES", "false")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.database import Base  # noqa: E402
from app.services.conversation_store import SqlConversationStore  # noqa: E402
from app.services.twilio_service import DeliveryResult  # noqa: E402


class FakeMessenger:
    """Records outbound texts; fails every send when `error` is set."""

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send_to_user(self, address, text):
        self.sent.append((address, text))
        if self.error:
            return DeliveryResult.failure(self.error)
        return DeliveryResult.success([f"SM{len(self.sent)}"])

    def fetch_media(self, url):
        return b"\x89PNG", "image/png"


class RecordingDispatcher:
    def __init__(self):
        self.dispatched = []

    def dispatch(self, submission_id):
        self.dispatched.append(submission_id)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return SqlConversationStore(db_session)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_messenger():
    return FakeMessenger(error="Twilio API 500: upstream unavailable")


@pytest.fixture
def api_client(store, messenger, dispatcher):
    """TestClient wired to the in-memory store and fake collaborators."""
    from fastapi.testclient import TestClient

    from app.dependencies import get_messenger, get_store, get_submission_dispatcher
    from app.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_messenger] = lambda: messenger
    app.dependency_overrides[get_submission_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()
