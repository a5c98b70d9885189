import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config.config import settings
from ..db.gateway import RecordStoreGateway
from ..models.db_models import Profile
from ..models.redis_models import AuthSession, AuthUser
from ..modules.auth_client import AuthClient, AuthError, AuthProviderError, SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED
from .errors import InvalidInputError, StoreUnreachableError, raise_for_store_error

logger = logging.getLogger(__name__)

ProfileListener = Callable[[Optional[AuthUser], Optional[Profile]], Union[None, Awaitable[None]]]

EDITABLE_PROFILE_FIELDS = {"full_name"}


class IdentityResolver:
    """
    Resolves the signed-in identity to its role-tagged profile row and keeps
    that answer current as the auth provider signs users in and out or
    refreshes their tokens.

    Initialization is one-shot and bounded by ready_timeout: once it elapses
    the resolver reports ready and unauthenticated instead of blocking, and
    the abandoned load is not allowed to change state afterwards.
    """

    def __init__(self, auth_client: AuthClient, gateway: RecordStoreGateway, ready_timeout: Optional[float] = None):
        self.auth_client = auth_client
        self.gateway = gateway
        self.ready_timeout = ready_timeout if ready_timeout is not None else settings.AUTH_READY_TIMEOUT_SECONDS

        self.user: Optional[AuthUser] = None
        self.profile: Optional[Profile] = None
        self.ready = False
        # Set when the last resolution lost the profile to a store outage.
        self.load_error: Optional[StoreUnreachableError] = None

        # Bumped on every new resolution, sign-out and close; a load only
        # commits if the generation it started with is still current.
        self._generation = 0
        self._closed = False
        self._listeners: List[ProfileListener] = []
        self._unsubscribe_auth: Optional[Callable[[], None]] = None

    # ===== Public API =====

    async def start(self) -> Optional[Profile]:
        """Subscribes to auth events and resolves the current identity once."""
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self.auth_client.on_auth_state_change(self._handle_auth_event)
        await self._resolve()
        self.raise_for_load_error()
        return self.profile

    def get_profile(self) -> Optional[Profile]:
        return self.profile

    def raise_for_load_error(self):
        """Re-raises the store outage that left the current identity without its profile."""
        if self.load_error is not None:
            raise self.load_error

    def on_auth_change(self, callback: ProfileListener) -> Callable[[], None]:
        """Registers a callback run with (user, profile) whenever the resolved identity changes."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def close(self):
        """Stops listening; loads still in flight will not touch the state any more."""
        self._closed = True
        self._generation += 1
        if self._unsubscribe_auth:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        self._listeners.clear()

    async def update_profile(self, updates: Dict[str, Any]) -> Profile:
        """Updates the signed-in user's own profile row (only the editable fields)."""
        if self.user is None:
            raise InvalidInputError("Not authenticated.")
        values = {key: value for key, value in updates.items() if key in EDITABLE_PROFILE_FIELDS}
        if not values:
            raise InvalidInputError("Nothing to update.")

        result = await self.gateway.execute(
            self.gateway.table("profiles").update(values).eq("id", self.user.id).select("id, full_name, email, role").single(),
            "profiles:updateSelf",
            {"userId": self.user.id, "updates": values},
        )
        if not result.ok:
            raise_for_store_error(result.error, "Failed to update profile")
        self.profile = Profile.model_validate(result.data)
        return self.profile

    # ===== Resolution =====

    async def _resolve(self):
        self._generation += 1
        generation = self._generation
        self.load_error = None
        try:
            await asyncio.wait_for(self._load(generation), timeout=self.ready_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Auth initialization took longer than {self.ready_timeout}s; continuing unauthenticated.")
            await self._commit(generation, None, None)
        if generation == self._generation and not self._closed:
            self.ready = True

    async def _load(self, generation: int):
        try:
            session = await self.auth_client.get_session()
        except (AuthError, AuthProviderError) as e:
            logger.error(f"Session error: {e}")
            await self._commit(generation, None, None)
            return

        if session is None:
            await self._commit(generation, None, None)
            return

        try:
            profile = await self.fetch_profile(session.user.id)
        except StoreUnreachableError as e:
            logger.error(f"Profile of user '{session.user.id}' could not be loaded: {e}")
            if generation == self._generation and not self._closed:
                self.load_error = e
            await self._commit(generation, session.user, None)
            return
        await self._commit(generation, session.user, profile)

    async def fetch_profile(self, user_id: str) -> Optional[Profile]:
        """Loads the profile row; a missing row or a failed lookup leaves the user without a profile."""
        result = await self.gateway.execute(
            self.gateway.table("profiles").select("id, full_name, email, role").eq("id", user_id).limit(1),
            "profiles:getForIdentity",
            {"userId": user_id},
        )
        if not result.ok:
            return None
        row = result.first()
        if row is None:
            logger.info(f"No profile row yet for user '{user_id}'.")
            return None
        return Profile.model_validate(row)

    async def _commit(self, generation: int, user: Optional[AuthUser], profile: Optional[Profile]) -> bool:
        if self._closed or generation != self._generation:
            return False
        self.user = user
        self.profile = profile
        for listener in list(self._listeners):
            result = listener(user, profile)
            if inspect.isawaitable(result):
                await result
        return True

    async def _handle_auth_event(self, event: str, session: Optional[AuthSession]):
        if self._closed:
            return
        if event == SIGNED_OUT or session is None:
            self._generation += 1
            await self._commit(self._generation, None, None)
            self.ready = True
        elif event in (SIGNED_IN, TOKEN_REFRESHED):
            await self._resolve()
