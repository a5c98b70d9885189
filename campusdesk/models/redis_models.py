from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
from .db_models import Profile


class AuthUser(BaseModel):
    """The identity part of an auth provider session."""
    id: str
    email: Optional[str] = None
    user_metadata: dict = Field(default_factory=dict)


class AuthSession(BaseModel):
    """
    An auth provider login context: tokens plus the identity they belong to.
    Not to be confused with a ClassSession.
    """
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[datetime] = Field(None, description="When the access token stops being accepted.")
    user: AuthUser

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds() <= seconds


class AuthSessionRedis(BaseModel):
    """
    Represents a logged-in API user stored in Redis. The provider tokens stay
    on the server; API clients only hold the application token.
    """
    auth: AuthSession = Field(..., description="The auth provider session, refreshed in the background.")
    profile: Optional[Profile] = Field(None, description="The resolved profile row, if one exists.")
    session_id: UUID = Field(..., description="Unique ID for this specific login.")
    session_start_time: datetime
    session_end_time: datetime

    @property
    def user_id(self) -> str:
        return self.auth.user.id
