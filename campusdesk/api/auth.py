import logging
from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from datetime import datetime, timedelta, timezone
from uuid import uuid4
from typing import Optional
import jwt
import httpx
from pydantic import ValidationError

from .schemas.user import Token, TokenData, LoginRequest, SignupRequest, SignupResponse, UserResponse, LoginResponse
from ..modules.auth_client import AuthClient, AuthError, AuthProviderError
from ..models.db_models import Profile
from ..models.redis_models import AuthSession, AuthSessionRedis
from ..db.gateway import RecordStoreGateway
from ..db.redis_client import RedisClient
from ..services.errors import StoreUnreachableError
from ..services.identity_service import IdentityResolver
from ..config.config import settings
from .dependencies import get_http_client, get_redis_client, build_auth_client, build_gateway
from .utilities.errors import raise_http_error
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


class CurrentUser:
    """The authenticated API caller, with clients bound to their auth provider session."""

    def __init__(self, session: AuthSessionRedis, auth_client: AuthClient, gateway: RecordStoreGateway):
        self.session = session
        self.auth_client = auth_client
        self.gateway = gateway

    @property
    def user_id(self) -> str:
        return self.session.user_id

    @property
    def profile(self) -> Optional[Profile]:
        return self.session.profile


# --- Helpers ---
def create_access_token(data: dict, expires_delta: timedelta):
    """Creates a new JWT access token from the given data and lifetime."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def require_role(current_user: CurrentUser, *roles: str) -> Profile:
    """Returns the caller's profile if its role is one of roles, else raises 403."""
    profile = current_user.profile
    if profile is None:
        logger.warning(f"User '{current_user.user_id}' has no profile row; denying role-scoped access.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No profile found for this account.")
    if profile.role not in roles:
        logger.warning(f"Unauthorized access attempt by user '{profile.id}' ({profile.role}); requires {roles}.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. This action is only available to: {', '.join(roles)}.",
        )
    return profile


def _user_response(session: AuthSessionRedis) -> UserResponse:
    return UserResponse(id=session.user_id, email=session.auth.user.email, profile=session.profile)


# --- Dependency for protected routes ---
async def get_current_user(
    token: str = Depends(oauth2_scheme),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    redis_client: RedisClient = Depends(get_redis_client),
) -> CurrentUser:
    """
    Decodes the application token, loads the server-side session from Redis
    and binds fresh auth and record store clients to it. An expired provider
    token is refreshed on the spot.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        logger.warning(f"Token validation error: {e}")
        raise credentials_exception

    if token_data.sub is None:
        logger.warning(f"Token is valid but missing 'sub': {payload}")
        raise credentials_exception

    stored = await redis_client.get_auth_session(token_data.sub)
    if stored is None:
        logger.warning(f"User '{token_data.sub}' has a valid token but no active session in Redis. Denying access.")
        raise credentials_exception

    auth_client = build_auth_client(http_client, stored.auth)
    if stored.auth.expires_within(0):
        resolver = IdentityResolver(auth_client, build_gateway(http_client, auth_client))
        try:
            stored.auth = await auth_client.refresh_session()
            profile = await resolver.start()
        except AuthError:
            logger.warning(f"Stored session of user '{token_data.sub}' could not be refreshed; removing it.")
            await redis_client.delete_auth_session(token_data.sub)
            raise credentials_exception
        except AuthProviderError:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth service is currently unavailable.")
        except StoreUnreachableError as e:
            raise_http_error(e)
        finally:
            resolver.close()
        if profile is not None:
            stored.profile = profile
        ttl = await redis_client.get_session_ttl(token_data.sub)
        if ttl > 0:
            await redis_client.save_auth_session(stored, ttl=ttl)

    return CurrentUser(stored, auth_client, build_gateway(http_client, auth_client))


# --- Central login logic ---

async def _start_server_session(redis_client: RedisClient, auth_session: AuthSession, profile: Optional[Profile]) -> LoginResponse:
    """Stores the provider session in Redis and issues the application token for it."""
    ttl = settings.SESSION_TTL_SECONDS
    now = datetime.now(timezone.utc)
    redis_session = AuthSessionRedis(
        auth=auth_session,
        profile=profile,
        session_id=uuid4(),
        session_start_time=now,
        session_end_time=now + timedelta(seconds=ttl),
    )
    await redis_client.save_auth_session(redis_session, ttl=ttl)
    logger.info(f"Redis session created for user '{redis_session.user_id}' with a TTL of {ttl} seconds.")

    access_token = create_access_token(data={"sub": redis_session.user_id}, expires_delta=timedelta(seconds=ttl))
    return LoginResponse(token=Token(access_token=access_token), user=_user_response(redis_session))


async def _perform_login(email: str, password: str, http_client: httpx.AsyncClient, redis_client: RedisClient) -> LoginResponse:
    """Signs in with the auth provider and lets the identity resolver pick up the profile on SIGNED_IN."""
    logger.info(f"Login attempt for '{email}'.")
    auth_client = build_auth_client(http_client)
    resolver = IdentityResolver(auth_client, build_gateway(http_client, auth_client))
    try:
        await resolver.start()
        auth_session = await auth_client.sign_in_with_password(email, password)
        resolver.raise_for_load_error()
        profile = resolver.get_profile()
    except AuthError:
        logger.warning(f"Authentication failed for '{email}' (invalid credentials).")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password.")
    except AuthProviderError as e:
        logger.error(f"Auth provider error during login: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth service is currently unavailable.")
    except StoreUnreachableError as e:
        logger.error(f"Profile of '{email}' could not be loaded during login: {e}")
        raise_http_error(e)
    finally:
        resolver.close()

    if profile is None:
        logger.warning(f"User '{auth_session.user.id}' signed in without a profile row.")
    return await _start_server_session(redis_client, auth_session, profile)


# --- API endpoints ---

@router.post("/token", response_model=Token)
@limiter.limit("20/minute")
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    redis_client: RedisClient = Depends(get_redis_client),
):
    """Standard OAuth2 endpoint for Swagger UI; the username is the e-mail address."""
    login_response = await _perform_login(form_data.username, form_data.password, http_client, redis_client)
    return login_response.token


@router.post("/login", response_model=LoginResponse)
@limiter.limit("20/minute")
async def login(
    request: Request,
    login_request: LoginRequest,
    http_client: httpx.AsyncClient = Depends(get_http_client),
    redis_client: RedisClient = Depends(get_redis_client),
):
    """Login endpoint for web and mobile clients."""
    return await _perform_login(login_request.email, login_request.password, http_client, redis_client)


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def signup(
    request: Request,
    signup_request: SignupRequest,
    http_client: httpx.AsyncClient = Depends(get_http_client),
    redis_client: RedisClient = Depends(get_redis_client),
):
    """
    Registers a new account. The full name travels as user metadata so the
    store can create the profile row. When the provider requires e-mail
    confirmation no token is returned.
    """
    auth_client = build_auth_client(http_client)
    try:
        user, auth_session = await auth_client.sign_up(
            signup_request.email, signup_request.password, {"full_name": signup_request.full_name.strip()}
        )
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AuthProviderError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth service is currently unavailable.")

    if auth_session is None:
        logger.info(f"User '{user.id}' signed up; e-mail confirmation pending.")
        return SignupResponse(user=UserResponse(id=user.id, email=user.email), confirmation_required=True)

    resolver = IdentityResolver(auth_client, build_gateway(http_client, auth_client))
    try:
        profile = await resolver.start()
    except StoreUnreachableError as e:
        raise_http_error(e)
    finally:
        resolver.close()
    login_response = await _start_server_session(redis_client, auth_session, profile)
    return SignupResponse(user=login_response.user, token=login_response.token)


@router.get("/me", response_model=UserResponse)
async def read_me(current_user: CurrentUser = Depends(get_current_user)):
    return _user_response(current_user.session)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("60/minute")
async def logout(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    redis_client: RedisClient = Depends(get_redis_client),
):
    """Ends the provider session and deletes the server-side session from Redis."""
    logger.info(f"User '{current_user.user_id}' logging out.")
    await current_user.auth_client.sign_out()
    await redis_client.delete_auth_session(current_user.user_id)
    logger.info(f"Session for user '{current_user.user_id}' successfully deleted from Redis.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
