# tests/conftest.py
import asyncio
import sys
import httpx
import pytest
from fastapi.testclient import TestClient

from campusdesk.api.auth import CurrentUser, get_current_user
from campusdesk.api.dependencies import get_http_client, get_redis_client
from campusdesk.main import app
from campusdesk.models.db_models import Profile
from campusdesk.modules.auth_client import AuthClient
from tests.helpers import InMemorySessions, ScriptedGateway, make_stored_session

# Windows needs the selector loop for the async tests.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def store() -> ScriptedGateway:
    """A gateway whose store calls are answered by label."""
    return ScriptedGateway()


@pytest.fixture
def sessions() -> InMemorySessions:
    return InMemorySessions()


@pytest.fixture
def admin_profile() -> Profile:
    return Profile(id="admin-1", full_name="Grace Admin", email="grace@campus.test", role="admin")


@pytest.fixture
def faculty_profile() -> Profile:
    return Profile(id="fac-1", full_name="Dr. Ada Lovelace", email="ada@campus.test", role="faculty")


@pytest.fixture
def student_profile() -> Profile:
    return Profile(id="stu-1", full_name="Alan Turing", email="alan@campus.test", role="student")


@pytest.fixture
def client(sessions):
    """
    A TestClient without the lifespan: the shared HTTP client and Redis are
    replaced by a plain httpx client (mocked per test with httpx_mock) and
    the in-memory session store.
    """
    http_client = httpx.AsyncClient()
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_redis_client] = lambda: sessions
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login_as(client, store, sessions):
    """Signs the client in as the given profile; store calls go to the scripted gateway."""

    def _login(profile: Profile) -> CurrentUser:
        stored = sessions.add(make_stored_session(profile))
        auth_client = AuthClient(httpx.AsyncClient(), "http://auth.test", "anon", session=stored.auth)
        current_user = CurrentUser(stored, auth_client, store.gateway)
        app.dependency_overrides[get_current_user] = lambda: current_user
        return current_user

    return _login
