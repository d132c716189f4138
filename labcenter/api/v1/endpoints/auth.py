"""Authentication endpoints."""

from fastapi import APIRouter, status

from labcenter.dependencies import Cache, DatabaseSession
from labcenter.schemas.auth import FirebaseAuthRequest, LoginResponse, Token, TokenRefresh
from labcenter.schemas.users import UserResponse
from labcenter.services.auth_service import AuthService

router = APIRouter()


@router.post(
    "/firebase/verify",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Firebase ID token verification",
)
async def firebase_verify(
    request: FirebaseAuthRequest,
    db: DatabaseSession,
    cache: Cache,
) -> LoginResponse:
    """
    Exchange a Firebase ID token for API tokens.

    The dashboard signs the user in with Firebase Authentication and sends
    the resulting ID token here. First-time users are registered as patients.

    Returns:
        Access token, refresh token, and user information
    """
    auth_service = AuthService(cache)

    firebase_token_data = await auth_service.verify_firebase_id_token(request.id_token)
    user, tokens = await auth_service.handle_firebase_login(
        firebase_token_data, db, full_name=request.full_name
    )

    return LoginResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/refresh",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Refresh access token",
)
async def refresh_token(request: TokenRefresh, cache: Cache) -> Token:
    """Issue a new token pair from a valid, unrevoked refresh token."""
    return AuthService(cache).refresh_access_token(request.refresh_token)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Logout and revoke tokens",
)
async def logout(request: TokenRefresh, cache: Cache) -> None:
    """Logout user by revoking refresh token."""
    AuthService(cache).revoke_token(request.refresh_token)
