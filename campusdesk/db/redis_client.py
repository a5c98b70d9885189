import logging
from typing import AsyncIterator, Optional
import redis.asyncio as redis

from ..models.redis_models import AuthSessionRedis

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "auth_sessions:"


class RedisClient:
    """
    Redis client that keeps the server-side auth sessions of API users.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    # ===== Auth Session Management =====

    async def save_auth_session(self, session: AuthSessionRedis, ttl: int):
        """Stores the user's auth session with a TTL."""
        key = f"{SESSION_KEY_PREFIX}{session.user_id}"
        await self._redis.set(key, session.model_dump_json(), ex=ttl)

    async def get_auth_session(self, user_id: str) -> Optional[AuthSessionRedis]:
        """Loads the user's auth session from Redis."""
        key = f"{SESSION_KEY_PREFIX}{user_id}"
        session_json = await self._redis.get(key)
        return AuthSessionRedis.model_validate_json(session_json) if session_json else None

    async def delete_auth_session(self, user_id: str) -> int:
        """Removes the user's auth session."""
        key = f"{SESSION_KEY_PREFIX}{user_id}"
        return await self._redis.delete(key)

    async def get_session_ttl(self, user_id: str) -> int:
        """Seconds left on the stored session; negative when missing or without expiry."""
        return await self._redis.ttl(f"{SESSION_KEY_PREFIX}{user_id}")

    async def iter_auth_sessions(self) -> AsyncIterator[AuthSessionRedis]:
        """Yields every stored auth session; entries that no longer parse are skipped."""
        async for key in self._redis.scan_iter(f"{SESSION_KEY_PREFIX}*"):
            session_json = await self._redis.get(key)
            if not session_json:
                continue
            try:
                yield AuthSessionRedis.model_validate_json(session_json)
            except ValueError:
                logger.warning(f"Skipping unreadable auth session stored under '{key}'.")
