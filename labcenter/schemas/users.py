"""User schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class UserRole(str, Enum):
    """Roles known to the service."""

    PATIENT = "patient"
    PHLEBO = "phlebo"
    STAFF = "staff"
    ADMIN = "admin"


class UserBase(BaseModel):
    """Base user schema with common fields."""

    email: EmailStr | None = None
    full_name: str = Field(..., min_length=1, max_length=200)
    contact: str | None = Field(None, max_length=20)
    address: str | None = Field(None, max_length=500)
    age: int | None = Field(None, ge=0, le=150)
    sex: str | None = Field(None, pattern="^(male|female|other)$")


class UserCreate(UserBase):
    """Schema for creating a user (admin, or first login)."""

    firebase_uid: str | None = Field(None, description="Firebase user ID")
    role: UserRole = UserRole.PATIENT


class UserUpdate(BaseModel):
    """Schema for updating a user profile."""

    full_name: str | None = Field(None, min_length=1, max_length=200)
    contact: str | None = Field(None, max_length=20)
    address: str | None = Field(None, max_length=500)
    age: int | None = Field(None, ge=0, le=150)
    sex: str | None = Field(None, pattern="^(male|female|other)$")


class UserRoleUpdate(BaseModel):
    """Schema for changing a user's role or active flag (admin only)."""

    role: UserRole | None = None
    is_active: bool | None = None


class UserResponse(UserBase):
    """User schema for API responses."""

    id: UUID
    firebase_uid: str | None = None
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """Identity projection used when selecting a phlebotomist or patient."""

    id: UUID
    full_name: str
    contact: str | None = None
    role: UserRole

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    """Paginated user list."""

    total: int
    page: int
    page_size: int
    items: list[UserResponse]
