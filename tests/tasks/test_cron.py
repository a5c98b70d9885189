import re
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from campusdesk.config.config import settings
from campusdesk.models.db_models import Profile
from campusdesk.tasks.cron import refresh_expiring_sessions
from tests.helpers import make_stored_session

SUPABASE = re.escape(settings.SUPABASE_URL.rstrip("/"))
TOKEN_URL = re.compile(SUPABASE + r"/auth/v1/token.*")
PROFILES_URL = re.compile(SUPABASE + r"/rest/v1/profiles.*")

FACULTY = Profile(id="user-1", full_name="Dr. Ada Lovelace", email="ada@campus.test", role="faculty")


def soon() -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=1)


def refreshed_payload() -> dict:
    return {
        "access_token": "access-new",
        "refresh_token": "refresh-new",
        "expires_in": 3600,
        "user": {"id": "user-1", "email": "ada@campus.test"},
    }


@pytest_asyncio.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.mark.asyncio
class TestRefreshExpiringSessions:

    async def test_expiring_session_is_refreshed_and_profile_reloaded(self, sessions, http_client, httpx_mock):
        """
        Scenario: A stored session expires within the margin and the user was promoted meanwhile.
        Expectation: New provider tokens and the new role are written back.
        """
        sessions.add(make_stored_session(FACULTY, expires_at=soon()))
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json=refreshed_payload())
        httpx_mock.add_response(method="GET", url=PROFILES_URL, json=[{**FACULTY.model_dump(), "role": "admin"}])

        refreshed = await refresh_expiring_sessions(sessions, http_client, margin_seconds=300)

        assert refreshed == 1
        stored = sessions.sessions["user-1"]
        assert stored.auth.access_token == "access-new"
        assert stored.profile.role == "admin"
        assert httpx_mock.get_request(url=PROFILES_URL).headers["Authorization"] == "Bearer access-new"

    async def test_sessions_outside_margin_or_without_refresh_token_are_left_alone(self, sessions, http_client):
        later = sessions.add(make_stored_session(FACULTY, expires_at=datetime.now(timezone.utc) + timedelta(hours=2)))
        no_refresh = sessions.add(make_stored_session(FACULTY, user_id="user-2", expires_at=soon(), refresh_token=None))

        refreshed = await refresh_expiring_sessions(sessions, http_client, margin_seconds=300)

        assert refreshed == 0
        assert sessions.sessions["user-1"].auth.access_token == later.auth.access_token
        assert sessions.sessions["user-2"].auth.access_token == no_refresh.auth.access_token

    async def test_rejected_refresh_removes_session(self, sessions, http_client, httpx_mock):
        sessions.add(make_stored_session(FACULTY, expires_at=soon()))
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=400, json={"error_description": "Invalid Refresh Token: Already Used"})

        refreshed = await refresh_expiring_sessions(sessions, http_client, margin_seconds=300)

        assert refreshed == 0
        assert sessions.sessions == {}

    async def test_provider_outage_keeps_session_for_next_run(self, sessions, http_client, httpx_mock):
        original = sessions.add(make_stored_session(FACULTY, expires_at=soon()))
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=502)

        refreshed = await refresh_expiring_sessions(sessions, http_client, margin_seconds=300)

        assert refreshed == 0
        assert sessions.sessions["user-1"].auth.access_token == original.auth.access_token
