"""User endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from labcenter.core.exceptions import ForbiddenException, NotFoundException
from labcenter.dependencies import AdminUser, Cache, CurrentUser, DatabaseSession, StaffUser
from labcenter.schemas.users import (
    UserCreate,
    UserListResponse,
    UserResponse,
    UserRole,
    UserRoleUpdate,
    UserSummary,
    UserUpdate,
)
from labcenter.services.user_service import UserService

router = APIRouter()


@router.get(
    "/users/me",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Get current user profile",
)
async def get_me(current_user: CurrentUser) -> UserResponse:
    """Profile of the authenticated user."""
    return UserResponse.model_validate(current_user)


@router.patch(
    "/users/me",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Update current user profile",
)
async def update_me(
    data: UserUpdate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> UserResponse:
    """Update contact details of the authenticated user."""
    user = await UserService(cache).update_user(db, current_user["id"], data)
    return UserResponse.model_validate(user)


@router.get(
    "/users/phlebos",
    response_model=list[UserSummary],
    status_code=status.HTTP_200_OK,
    summary="List phlebotomists available for assignment",
)
async def list_phlebos(_: StaffUser, db: DatabaseSession, cache: Cache) -> list[UserSummary]:
    """Active phlebotomists, for the assignment picker."""
    phlebos = await UserService(cache).list_phlebos(db)
    return [UserSummary.model_validate(p) for p in phlebos]


@router.get(
    "/users",
    response_model=UserListResponse,
    status_code=status.HTTP_200_OK,
    summary="List users",
)
async def list_users(
    _: StaffUser,
    db: DatabaseSession,
    cache: Cache,
    role: UserRole | None = Query(None),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> UserListResponse:
    """List users by role (staff use this to find patients)."""
    items, total = await UserService(cache).list_users(
        db, role=role, search=search, page=page, page_size=page_size
    )
    return UserListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[UserResponse.model_validate(u) for u in items],
    )


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create user",
)
async def create_user(
    data: UserCreate,
    current_user: StaffUser,
    db: DatabaseSession,
    cache: Cache,
) -> UserResponse:
    """
    Register a user.

    Staff may register walk-in patients; only admins may create staff,
    phlebotomist or admin accounts.
    """
    if data.role is not UserRole.PATIENT and current_user["role"] != UserRole.ADMIN.value:
        raise ForbiddenException("Only admins can create staff accounts")
    user = await UserService(cache).create_user(db, data)
    return UserResponse.model_validate(user)


@router.get(
    "/users/{user_id}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Get user by ID",
)
async def get_user(user_id: UUID, _: StaffUser, db: DatabaseSession, cache: Cache) -> UserResponse:
    """Get a user's profile."""
    user = await UserService(cache).get_user_by_id(db, user_id)
    if not user:
        raise NotFoundException("User not found")
    return UserResponse.model_validate(user)


@router.patch(
    "/users/{user_id}",
    response_model=UserResponse,
    status_code=status.HTTP_200_OK,
    summary="Change user role or active flag",
)
async def update_user_role(
    user_id: UUID,
    data: UserRoleUpdate,
    _: AdminUser,
    db: DatabaseSession,
    cache: Cache,
) -> UserResponse:
    """Grant a role or (de)activate an account."""
    user = await UserService(cache).update_user(db, user_id, data)
    return UserResponse.model_validate(user)
