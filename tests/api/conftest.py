"""
Route test fixtures.

The app is exercised through TestClient without the lifespan (no database,
Redis or Sentry). Auth and collaborators are swapped via dependency_overrides.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from sweeper.core.database import get_db
from sweeper.main import app
from sweeper.models.user import User
from sweeper.modules.auth.dependencies import (
    get_current_user,
    get_bulk_executor,
    get_token_manager,
    get_gmail_client_factory,
    get_history_recorder,
)


class FakeGmailClient:
    """Callable factory + async context manager standing in for GmailClient."""

    def __init__(self):
        self.calls = []
        self.error = None
        self.profile = {"emailAddress": "me@example.com"}

    def __call__(self, access_token):
        self.access_token = access_token
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        async def operation(*args):
            self.calls.append((name, *args))
            if self.error:
                raise self.error
            if name == "get_profile":
                return self.profile
            return {}

        return operation


@pytest.fixture
def user():
    return User(id=uuid.uuid4(), email="me@example.com", is_active=True)


@pytest.fixture
def db():
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.execute = AsyncMock()
    executor.preview = AsyncMock()
    executor.undo = AsyncMock()
    executor.get_status = AsyncMock()
    executor.recorder.list_jobs = AsyncMock(return_value=[])
    return executor


@pytest.fixture
def token_manager():
    manager = AsyncMock()
    manager.get_access_token = AsyncMock(return_value="ya29.test")
    return manager


@pytest.fixture
def gmail():
    return FakeGmailClient()


@pytest.fixture
def recorder():
    recorder = AsyncMock()
    recorder.track_action = AsyncMock(return_value=True)
    return recorder


@pytest.fixture
def client(user, db, executor, token_manager, gmail, recorder):
    """Authenticated client with every collaborator faked."""

    async def override_db():
        yield db

    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_bulk_executor] = lambda: executor
    app.dependency_overrides[get_token_manager] = lambda: token_manager
    app.dependency_overrides[get_gmail_client_factory] = lambda: gmail
    app.dependency_overrides[get_history_recorder] = lambda: recorder
    app.state.limiter.enabled = False

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.limiter.enabled = True


@pytest.fixture
def anonymous_client(db):
    """Client with a real get_current_user (no session cookie)."""

    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.state.limiter.enabled = False

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.limiter.enabled = True
