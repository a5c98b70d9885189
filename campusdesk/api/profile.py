from fastapi import APIRouter, Depends, HTTPException, status

from .auth import CurrentUser, get_current_user
from .dependencies import get_redis_client
from .schemas.user import ProfileUpdateRequest
from .utilities.errors import raise_http_error
from ..db.redis_client import RedisClient
from ..models.db_models import Profile
from ..services.errors import ServiceError, StoreUnreachableError
from ..services.identity_service import IdentityResolver

router = APIRouter(
    prefix="/profile",
    tags=["Profile"]
)


@router.patch("", response_model=Profile)
async def update_profile(
    body: ProfileUpdateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    redis_client: RedisClient = Depends(get_redis_client),
):
    """Updates the caller's own profile and keeps the stored session in step with it."""
    resolver = IdentityResolver(current_user.auth_client, current_user.gateway)
    try:
        await resolver.start()
        if resolver.user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session is no longer valid.")
        profile = await resolver.update_profile(body.model_dump())
    except (ServiceError, StoreUnreachableError) as e:
        raise_http_error(e)
    finally:
        resolver.close()

    current_user.session.profile = profile
    ttl = await redis_client.get_session_ttl(current_user.user_id)
    if ttl > 0:
        await redis_client.save_auth_session(current_user.session, ttl=ttl)
    return profile
