# campusdesk/api/dependencies.py
from typing import Optional

from fastapi import Request, Depends
import httpx
import redis.asyncio as redis

from ..config.config import settings
from ..db.gateway import RecordStoreGateway
from ..db.redis_client import RedisClient
from ..db.store_client import StoreClient
from ..models.redis_models import AuthSession
from ..modules.auth_client import AuthClient


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """The shared Redis connection pool created in the lifespan."""
    return request.app.state.redis_pool


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The shared HTTP client used for every auth provider and record store call."""
    return request.app.state.http_client


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)


def build_auth_client(http_client: httpx.AsyncClient, session: Optional[AuthSession] = None) -> AuthClient:
    """
    A fresh auth client per request (or per background job), bound to one
    user's session. The HTTP client underneath is shared.
    """
    return AuthClient(http_client, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, session=session)


def build_gateway(http_client: httpx.AsyncClient, auth_client: Optional[AuthClient] = None) -> RecordStoreGateway:
    """A record store gateway whose calls carry the auth client's access token."""
    store = StoreClient(http_client, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, auth_client=auth_client)
    return RecordStoreGateway(store)
