"""Authentication schemas."""

from pydantic import BaseModel, Field

from labcenter.schemas.users import UserResponse


class Token(BaseModel):
    """JWT token response schema."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenRefresh(BaseModel):
    """Token refresh request schema."""

    refresh_token: str


class FirebaseAuthRequest(BaseModel):
    """Firebase ID token authentication request."""

    id_token: str = Field(..., description="Firebase ID token from the web client")
    full_name: str | None = Field(None, max_length=200, description="Name for first sign-up")


class LoginResponse(Token):
    """Login response with tokens and user info."""

    user: UserResponse
