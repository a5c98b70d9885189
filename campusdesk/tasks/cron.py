import logging
from typing import Optional

import httpx

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..api.dependencies import build_auth_client, build_gateway
from ..modules.auth_client import AuthError, AuthProviderError
from ..services.errors import StoreUnreachableError
from ..services.identity_service import IdentityResolver

logger = logging.getLogger(__name__)


async def refresh_expiring_sessions(redis_client: RedisClient, http_client: httpx.AsyncClient, margin_seconds: Optional[int] = None) -> int:
    """
    Runs periodically. Every stored session whose provider token expires
    within the margin is refreshed, its profile re-resolved and the result
    written back under the remaining TTL. Sessions the provider rejects are
    removed. Returns the number of refreshed sessions.
    """
    margin = margin_seconds if margin_seconds is not None else settings.SESSION_REFRESH_MARGIN_SECONDS
    logger.info("Running refresh_expiring_sessions...")
    refreshed = 0

    async for stored in redis_client.iter_auth_sessions():
        user_id = stored.user_id
        if not stored.auth.expires_within(margin):
            continue
        if not stored.auth.refresh_token:
            logger.info(f"Session of user '{user_id}' is expiring but has no refresh token; leaving it to lapse.")
            continue

        auth_client = build_auth_client(http_client, stored.auth)
        resolver = IdentityResolver(auth_client, build_gateway(http_client, auth_client))
        try:
            stored.auth = await auth_client.refresh_session()
            profile = await resolver.start()
        except AuthError as e:
            logger.warning(f"Refresh rejected for user '{user_id}' ({e}); removing the stored session.")
            await redis_client.delete_auth_session(user_id)
            continue
        except (AuthProviderError, StoreUnreachableError) as e:
            logger.error(f"Failed to refresh session of user '{user_id}': {e}", exc_info=True)
            continue
        finally:
            resolver.close()

        if profile is not None:
            stored.profile = profile
        ttl = await redis_client.get_session_ttl(user_id)
        if ttl > 0:
            await redis_client.save_auth_session(stored, ttl=ttl)
            refreshed += 1

    if refreshed:
        logger.info(f"Refreshed {refreshed} expiring auth sessions.")
    return refreshed
