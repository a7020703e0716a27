# orderflow/conftest.py
import pytest
from fastapi.testclient import TestClient

from orderflow.core.config import Settings
from orderflow.core.database import Database
from orderflow.features.backups.storage import LocalBlobStore
from orderflow.features.notifications.dispatcher import Dispatcher
from orderflow.tests.factories import RecordingChannel


@pytest.fixture
def cfg(tmp_path) -> Settings:
    return Settings(
        ENV="test",
        DATABASE_URL="sqlite://",
        AUTH_JWT_SECRET="test-jwt-secret",
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET="whsec_test_secret",
        BACKUP_ROOT=str(tmp_path / "blobs"),
        REPORT_TIMEZONE="America/New_York",
    )


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def push_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def dispatcher(db, push_channel, email_channel) -> Dispatcher:
    return Dispatcher(db=db, channels={"push": push_channel, "email": email_channel})


@pytest.fixture
def blob_store(cfg) -> LocalBlobStore:
    return LocalBlobStore(cfg.BACKUP_ROOT)


@pytest.fixture
def client(cfg, db, dispatcher, blob_store):
    from orderflow.main import create_app

    app = create_app(cfg, db=db, dispatcher=dispatcher, blob_store=blob_store)
    return TestClient(app)
