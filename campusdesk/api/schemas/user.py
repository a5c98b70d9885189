# campusdesk/api/schemas/user.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from ...models.db_models import Profile


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: str
    email: Optional[str] = None
    profile: Optional[Profile] = None

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    token: Token
    user: UserResponse


class SignupResponse(BaseModel):
    """Without a token the account still has to be confirmed by e-mail."""
    user: UserResponse
    token: Optional[Token] = None
    confirmation_required: bool = False


class ProfileUpdateRequest(BaseModel):
    full_name: str = Field(..., min_length=1)


# Internal representation of JWT data
class TokenData(BaseModel):
    sub: Optional[str] = None
