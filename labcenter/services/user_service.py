"""User service for business logic."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.core.exceptions import ConflictException, NotFoundException
from labcenter.core.redis_client import CacheManager
from labcenter.models.users import users
from labcenter.schemas.users import UserCreate, UserRole, UserRoleUpdate, UserUpdate


class UserService:
    """Service for user operations."""

    # Cache TTL in seconds (30 minutes for user profiles)
    USER_CACHE_TTL = 1800

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager

    def _cache_key(self, user_id: UUID) -> str:
        return self.cache.key("user", user_id) if self.cache else f"user:{user_id}"

    def _invalidate(self, user_id: UUID) -> None:
        if self.cache:
            self.cache.delete(self._cache_key(user_id))

    @staticmethod
    def _from_cache(cached: dict[str, Any]) -> dict[str, Any]:
        # JSON round-trip turns UUIDs into strings
        cached["id"] = UUID(cached["id"])
        return cached

    async def create_user(self, db: AsyncSession, user_data: UserCreate) -> dict[str, Any]:
        """
        Create a new user.

        Raises:
            ConflictException: If the Firebase UID is already registered
        """
        if user_data.firebase_uid and await self.get_user_by_firebase_uid(db, user_data.firebase_uid):
            raise ConflictException("User already registered")

        query = (
            users.insert()
            .values(
                firebase_uid=user_data.firebase_uid,
                email=user_data.email,
                full_name=user_data.full_name,
                contact=user_data.contact,
                address=user_data.address,
                age=user_data.age,
                sex=user_data.sex,
                role=user_data.role.value,
            )
            .returning(users)
        )

        result = await db.execute(query)
        await db.commit()
        user = result.mappings().first()

        if not user:
            raise ValueError("Failed to create user")

        return dict(user)

    async def get_user_by_id(self, db: AsyncSession, user_id: UUID) -> dict[str, Any] | None:
        """Get user by internal ID with caching."""
        if self.cache:
            cached_user = self.cache.get_json(self._cache_key(user_id))
            if cached_user:
                return self._from_cache(cached_user)

        query = select(users).where(users.c.id == user_id)
        result = await db.execute(query)
        user = result.mappings().first()

        if not user:
            return None

        user_dict = dict(user)

        if self.cache:
            self.cache.set_json(self._cache_key(user_id), user_dict, ttl=self.USER_CACHE_TTL)

        return user_dict

    async def get_user_by_firebase_uid(self, db: AsyncSession, firebase_uid: str) -> dict[str, Any] | None:
        """Get user by Firebase UID."""
        query = select(users).where(users.c.firebase_uid == firebase_uid)
        result = await db.execute(query)
        user = result.mappings().first()
        return dict(user) if user else None

    async def list_users(
        self,
        db: AsyncSession,
        role: UserRole | None = None,
        active_only: bool = False,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List users, optionally filtered by role.

        Returns:
            Tuple of (users, total count)
        """
        conditions = []
        if role is not None:
            conditions.append(users.c.role == role.value)
        if active_only:
            conditions.append(users.c.is_active == True)  # noqa: E712
        if search:
            pattern = f"%{search}%"
            conditions.append(users.c.full_name.ilike(pattern) | users.c.email.ilike(pattern))

        total = (
            await db.execute(select(func.count()).select_from(users).where(*conditions))
        ).scalar() or 0

        result = await db.execute(
            select(users)
            .where(*conditions)
            .order_by(users.c.full_name)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return [dict(row._mapping) for row in result.fetchall()], total

    async def list_phlebos(self, db: AsyncSession) -> list[dict[str, Any]]:
        """Identity projections of active phlebotomists, for assignment."""
        result = await db.execute(
            select(users.c.id, users.c.full_name, users.c.contact, users.c.role)
            .where(users.c.role == UserRole.PHLEBO.value, users.c.is_active == True)  # noqa: E712
            .order_by(users.c.full_name)
        )
        return [dict(row._mapping) for row in result.fetchall()]

    async def update_user(
        self, db: AsyncSession, user_id: UUID, user_data: UserUpdate | UserRoleUpdate
    ) -> dict[str, Any]:
        """
        Update user profile, role or active flag.

        Raises:
            NotFoundException: If the user does not exist
        """
        update_data = user_data.model_dump(exclude_unset=True, exclude_none=True)
        if "role" in update_data:
            update_data["role"] = UserRole(update_data["role"]).value
        if not update_data:
            user = await self.get_user_by_id(db, user_id)
            if not user:
                raise NotFoundException("User not found")
            return user

        update_data["updated_at"] = datetime.now(UTC)

        query = update(users).where(users.c.id == user_id).values(**update_data).returning(users)

        result = await db.execute(query)
        user = result.mappings().first()

        if not user:
            await db.rollback()
            raise NotFoundException("User not found")

        await db.commit()
        self._invalidate(user_id)
        return dict(user)

    async def update_last_login(self, db: AsyncSession, user_id: UUID) -> None:
        """Update user's last login timestamp."""
        query = update(users).where(users.c.id == user_id).values(last_login_at=datetime.now(UTC))
        await db.execute(query)
        await db.commit()
        self._invalidate(user_id)
