"""FastAPI dependencies."""

from collections.abc import Awaitable, Callable
from typing import Annotated, Any
from uuid import UUID

import redis
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.core.redis_client import CacheManager, get_redis_client
from labcenter.core.security import decode_access_token
from labcenter.database import get_db
from labcenter.schemas.users import UserRole
from labcenter.services.user_service import UserService

# Security
security = HTTPBearer()


def get_cache_manager(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> CacheManager:
    """Cache manager bound to the shared Redis client."""
    return CacheManager(redis_client)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)

    user_id_str = payload.get("sub") if payload else None
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
) -> dict[str, Any]:
    """
    Get current user from database (or the profile cache).

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService(cache).get_user_by_id(db, user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    structlog.contextvars.bind_contextvars(user_id=str(user["id"]), role=user["role"])
    return user


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[dict[str, Any]]]:
    """
    Dependency factory restricting an endpoint to the given roles.

    Admins pass every staff check.
    """
    allowed = {role.value for role in roles}
    if UserRole.STAFF.value in allowed:
        allowed.add(UserRole.ADMIN.value)

    async def checker(user: Annotated[dict[str, Any], Depends(get_current_user)]) -> dict[str, Any]:
        if user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return user

    return checker


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[dict[str, Any], Depends(get_current_user)]
Cache = Annotated[CacheManager, Depends(get_cache_manager)]
PatientUser = Annotated[dict[str, Any], Depends(require_roles(UserRole.PATIENT))]
PhleboUser = Annotated[dict[str, Any], Depends(require_roles(UserRole.PHLEBO))]
StaffUser = Annotated[dict[str, Any], Depends(require_roles(UserRole.STAFF))]
AdminUser = Annotated[dict[str, Any], Depends(require_roles(UserRole.ADMIN))]
WorkflowUser = Annotated[dict[str, Any], Depends(require_roles(UserRole.STAFF, UserRole.PHLEBO))]
