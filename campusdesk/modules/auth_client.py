# campusdesk/modules/auth_client.py

import httpx
import inspect
import logging
import jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ..models.redis_models import AuthSession, AuthUser

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

AuthListener = Callable[[str, Optional[AuthSession]], Union[None, Awaitable[None]]]


# Custom exceptions for clearer error handling
class AuthError(Exception):
    """Raised when the auth provider rejects the request (bad credentials, expired refresh token...)."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status


class AuthProviderError(Exception):
    """Raised when the auth provider cannot be reached or answers unexpectedly."""
    pass


def _token_expiry(access_token: str) -> Optional[datetime]:
    """Reads the exp claim of an access token without verifying it."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    return datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None


def parse_session(payload: Dict[str, Any]) -> AuthSession:
    """Builds an AuthSession from a GoTrue token response."""
    expires_at = None
    if payload.get("expires_at"):
        expires_at = datetime.fromtimestamp(int(payload["expires_at"]), tz=timezone.utc)
    elif payload.get("expires_in"):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(payload["expires_in"]))
    else:
        expires_at = _token_expiry(payload["access_token"])

    return AuthSession(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        token_type=payload.get("token_type", "bearer"),
        expires_at=expires_at,
        user=AuthUser.model_validate(payload["user"]),
    )


class AuthClient:
    """
    Client for the hosted auth provider (GoTrue REST endpoints).

    Holds the current login context for one user and notifies listeners when
    it changes. The HTTP client is injected and owned by the caller.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str, api_key: str, session: Optional[AuthSession] = None):
        self._client = http_client
        self._auth_url = f"{base_url.rstrip('/')}/auth/v1"
        self._api_key = api_key
        self._session = session
        self._listeners: List[AuthListener] = []

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    @property
    def current_session(self) -> Optional[AuthSession]:
        return self._session

    def set_session(self, session: Optional[AuthSession]):
        """Restores a previously stored session without notifying listeners."""
        self._session = session

    # ===== Auth state notifications =====

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Registers a listener; returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _emit(self, event: str, session: Optional[AuthSession]):
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Auth listener failed while handling '{event}': {e}", exc_info=True)

    # ===== Requests =====

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
        }

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, str]] = None, access_token: Optional[str] = None) -> httpx.Response:
        try:
            response = await self._client.post(
                f"{self._auth_url}{path}", json=payload, params=params, headers=self._headers(access_token)
            )
        except httpx.RequestError as e:
            logger.error(f"Network error while calling the auth provider ({path}): {e}", exc_info=True)
            raise AuthProviderError("The authentication service could not be reached.") from e

        if response.status_code >= 500:
            logger.error(f"Auth provider answered {response.status_code} on {path}: {response.text}")
            raise AuthProviderError(f"The authentication service failed with status {response.status_code}.")
        if response.is_error:
            body: Dict[str, Any] = {}
            try:
                body = response.json()
            except ValueError:
                pass
            message = body.get("msg") or body.get("error_description") or body.get("message") or response.text
            code = body.get("error_code") or body.get("error")
            logger.warning(f"Auth provider rejected {path}: {message} (code={code})")
            raise AuthError(message, code=code, status=response.status_code)
        return response

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Logs in with e-mail and password. Raises AuthError on bad credentials."""
        logger.info(f"Password sign-in attempt for '{email}'.")
        response = await self._post("/token", {"email": email, "password": password}, params={"grant_type": "password"})
        self._session = parse_session(response.json())
        logger.info(f"User '{self._session.user.id}' signed in.")
        await self._emit(SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email: str, password: str, profile_seed: Optional[Dict[str, Any]] = None) -> Tuple[AuthUser, Optional[AuthSession]]:
        """
        Registers a new user. profile_seed (e.g. full_name) is stored as user
        metadata, from which the store creates the profile row. When e-mail
        confirmation is on, no session comes back.
        """
        logger.info(f"Sign-up attempt for '{email}'.")
        response = await self._post("/signup", {"email": email, "password": password, "data": profile_seed or {}})
        body = response.json()
        if body.get("access_token"):
            self._session = parse_session(body)
            await self._emit(SIGNED_IN, self._session)
            return self._session.user, self._session
        user_payload = body.get("user") or body
        return AuthUser.model_validate(user_payload), None

    async def refresh_session(self) -> AuthSession:
        """Exchanges the refresh token for a new access token."""
        if not self._session or not self._session.refresh_token:
            raise AuthError("There is no session to refresh.")
        response = await self._post("/token", {"refresh_token": self._session.refresh_token}, params={"grant_type": "refresh_token"})
        self._session = parse_session(response.json())
        logger.info(f"Access token refreshed for user '{self._session.user.id}'.")
        await self._emit(TOKEN_REFRESHED, self._session)
        return self._session

    async def get_session(self) -> Optional[AuthSession]:
        """Returns the current session, refreshing it first when the access token has expired."""
        if self._session is None:
            return None
        if self._session.expires_within(0) and self._session.refresh_token:
            return await self.refresh_session()
        return self._session

    async def sign_out(self):
        """Ends the session on the provider (best effort) and forgets it locally."""
        session = self._session
        self._session = None
        if session is not None:
            try:
                await self._post("/logout", access_token=session.access_token)
            except (AuthError, AuthProviderError) as e:
                logger.warning(f"Sign-out could not be confirmed by the auth provider: {e}")
        await self._emit(SIGNED_OUT, None)
