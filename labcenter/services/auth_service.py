"""Authentication service for Firebase and JWT."""

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.config import settings
from labcenter.core.exceptions import ForbiddenException, UnauthorizedException
from labcenter.core.firebase import verify_firebase_token
from labcenter.core.redis_client import CacheManager
from labcenter.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
)
from labcenter.lifecycle.effects import Broadcast
from labcenter.schemas.auth import Token
from labcenter.schemas.users import UserCreate, UserRole
from labcenter.services.notification_service import NotificationService
from labcenter.services.user_service import UserService

logger = structlog.get_logger(__name__)


class AuthService:
    """Authentication service for handling Firebase and JWT operations."""

    def __init__(self, cache_manager: CacheManager):
        """Initialize auth service with cache manager."""
        self.cache = cache_manager

    def _blacklist_key(self, token: str) -> str:
        return self.cache.key("blacklist", token)

    async def verify_firebase_id_token(self, id_token: str) -> dict[str, Any]:
        """
        Verify Firebase ID token and extract user information.

        Raises:
            UnauthorizedException: If token verification fails
        """
        try:
            return await verify_firebase_token(id_token)
        except ValueError as e:
            raise UnauthorizedException(str(e))

    async def handle_firebase_login(
        self, firebase_token_data: dict[str, Any], db: AsyncSession, full_name: str | None = None
    ) -> tuple[dict[str, Any], Token]:
        """
        Handle Firebase login: get or register the user and issue tokens.

        New accounts are always patients; staff, phlebotomist and admin roles
        are granted by an admin.

        Args:
            firebase_token_data: Decoded Firebase token with user info
            db: Database session
            full_name: Name to register with when the token carries none

        Returns:
            Tuple of (user dict, token pair)
        """
        firebase_uid = firebase_token_data["uid"]
        email = firebase_token_data.get("email")
        name = full_name or firebase_token_data.get("name") or email
        if not name:
            raise UnauthorizedException("A name or email is required to register")

        user_data = UserCreate(
            firebase_uid=firebase_uid,
            email=email,
            full_name=name,
            contact=firebase_token_data.get("phone_number"),
            role=UserRole.PATIENT,
        )

        user_service = UserService(self.cache)
        user = await user_service.get_user_by_firebase_uid(db, firebase_uid)
        if user:
            await user_service.update_last_login(db, user["id"])
        else:
            user = await user_service.create_user(db, user_data)
            logger.info("patient_registered", user_id=str(user["id"]))
            await NotificationService.emit(
                db,
                title="New Patient Registered",
                message=f"{user['full_name']} has registered as a new patient.",
                target=Broadcast.ALL_STAFF,
            )

        if not user["is_active"]:
            raise ForbiddenException("User account is deactivated")

        return user, self.create_tokens(str(user["id"]), user["role"])

    def create_tokens(self, user_id: str, role: str) -> Token:
        """
        Create access and refresh tokens for a user.

        Args:
            user_id: User identifier (internal UUID)
            role: User role, carried as a claim for clients

        Returns:
            Token pair (access and refresh)
        """
        access_token = create_access_token(
            data={"sub": user_id, "role": role},
            expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        )

        refresh_token = create_refresh_token(
            data={"sub": user_id, "role": role},
            expires_delta=timedelta(days=settings.refresh_token_expire_days),
        )

        return Token(access_token=access_token, refresh_token=refresh_token, token_type="bearer")

    def refresh_access_token(self, refresh_token: str) -> Token:
        """
        Create new token pair from a refresh token.

        Raises:
            UnauthorizedException: If refresh token is invalid or revoked
        """
        payload = decode_refresh_token(refresh_token)

        if payload is None or payload.get("sub") is None:
            raise UnauthorizedException("Invalid refresh token")

        if self.cache.exists(self._blacklist_key(refresh_token)):
            raise UnauthorizedException("Token has been revoked")

        return self.create_tokens(payload["sub"], payload.get("role", UserRole.PATIENT.value))

    def revoke_token(self, token: str, ttl: int | None = None) -> None:
        """Revoke a refresh token by adding it to the blacklist."""
        ttl = ttl or settings.refresh_token_expire_days * 86400
        self.cache.set(self._blacklist_key(token), "1", ttl=ttl)
