"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any app import, so the
cached settings and the module-level engine pick up the test database.
"""

import os
import tempfile

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "whatsapp_inbox_test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["PROVIDER_API_KEY"] = "test-api-key"
os.environ["PROVIDER_PHONE_ID"] = "test-phone-id"

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from whatsapp_inbox.config import get_settings
get_settings.cache_clear()

from whatsapp_inbox import models  # noqa: E402,F401 - register tables
from whatsapp_inbox.main import app  # noqa: E402
from whatsapp_inbox.media_storage import get_media_storage  # noqa: E402
from whatsapp_inbox.provider import get_provider_client  # noqa: E402
from whatsapp_inbox.storage import Base, SessionLocal, engine  # noqa: E402


class FakeProvider:
    """Stands in for WapisimoClient and records every send."""

    def __init__(self):
        self.calls = []
        self.error = None

    async def send_text(self, to, message):
        self.calls.append(("text", to, message))
        if self.error:
            raise self.error
        return {"success": True, "id": "wamid.text"}

    async def send_media(self, to, media_url, media_type, caption=None):
        self.calls.append(("media", to, media_url, media_type, caption))
        if self.error:
            raise self.error
        return {"success": True, "id": "wamid.media"}


class FakeStorage:
    """Stands in for R2Storage, keeping uploads in memory."""

    def __init__(self, configured=True):
        self.configured = configured
        self.uploads = []

    def is_configured(self):
        return self.configured

    def upload_file(self, data, filename, content_type):
        self.uploads.append((data, filename, content_type))
        return f"https://media.test/uploads/{filename}"

    @staticmethod
    def configuration_instructions():
        return "R2 Storage is not configured. Please add R2_ACCOUNT_ID ..."


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture(scope="function")
def client(fake_provider, fake_storage):
    """Test client with a fresh database and fake external services."""
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_provider_client] = lambda: fake_provider
    app.dependency_overrides[get_media_storage] = lambda: fake_storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(client):
    """A session on the same database the client writes to."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

