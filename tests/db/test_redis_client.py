import pytest
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import redis.asyncio as redis

from campusdesk.db.redis_client import RedisClient
from campusdesk.models.db_models import Profile
from campusdesk.models.redis_models import AuthSession, AuthSessionRedis, AuthUser


def create_sample_session(user_id: str = "user-1") -> AuthSessionRedis:
    return AuthSessionRedis(
        auth=AuthSession(access_token="access", refresh_token="refresh", user=AuthUser(id=user_id, email="ada@campus.test")),
        profile=Profile(id=user_id, full_name="Dr. Ada Lovelace", role="faculty"),
        session_id=uuid.uuid4(),
        session_start_time=datetime.now(timezone.utc),
        session_end_time=datetime.now(timezone.utc) + timedelta(hours=1),
    )


@pytest.fixture
def redis_client() -> RedisClient:
    client = RedisClient(pool=redis.ConnectionPool.from_url("redis://localhost:6379/0", decode_responses=True))
    client._redis = AsyncMock()
    return client


@pytest.mark.asyncio
class TestAuthSessions:

    async def test_save_uses_user_key_and_ttl(self, redis_client):
        session = create_sample_session()

        await redis_client.save_auth_session(session, ttl=3600)

        key, payload = redis_client._redis.set.await_args.args
        assert key == "auth_sessions:user-1"
        assert redis_client._redis.set.await_args.kwargs == {"ex": 3600}
        assert AuthSessionRedis.model_validate_json(payload).profile.role == "faculty"

    async def test_get_returns_parsed_session(self, redis_client):
        session = create_sample_session()
        redis_client._redis.get.return_value = session.model_dump_json()

        loaded = await redis_client.get_auth_session("user-1")

        assert loaded.session_id == session.session_id
        assert loaded.user_id == "user-1"
        redis_client._redis.get.assert_awaited_once_with("auth_sessions:user-1")

    async def test_get_missing_session(self, redis_client):
        redis_client._redis.get.return_value = None

        assert await redis_client.get_auth_session("nobody") is None

    async def test_delete_and_ttl(self, redis_client):
        redis_client._redis.delete.return_value = 1
        redis_client._redis.ttl.return_value = 120

        assert await redis_client.delete_auth_session("user-1") == 1
        assert await redis_client.get_session_ttl("user-1") == 120
        redis_client._redis.delete.assert_awaited_once_with("auth_sessions:user-1")

    async def test_iteration_skips_unreadable_entries(self, redis_client):
        good = create_sample_session("user-2")
        stored = {"auth_sessions:user-2": good.model_dump_json(), "auth_sessions:broken": "{not json", "auth_sessions:gone": None}

        async def scan_iter(pattern):
            assert pattern == "auth_sessions:*"
            for key in stored:
                yield key

        redis_client._redis.scan_iter = scan_iter
        redis_client._redis.get.side_effect = lambda key: stored[key]

        sessions = [s async for s in redis_client.iter_auth_sessions()]

        assert [s.user_id for s in sessions] == ["user-2"]
