"""Append-only history log."""

from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.models.history import history_logs

logger = structlog.get_logger(__name__)


class HistoryService:
    """Service for the audit trail shown to admins."""

    @staticmethod
    async def log(db: AsyncSession, user: str, action: str) -> bool:
        """
        Append an entry. Failures are logged and reported as ``False``.

        Args:
            db: Database session
            user: Display label of the actor, e.g. ``"Asha (Staff)"``
            action: Human-readable description
        """
        try:
            await db.execute(history_logs.insert().values(user=user, action=action))
            await db.commit()
            return True
        except Exception as e:
            await db.rollback()
            logger.warning("history_log_failed", user=user, error=str(e))
            return False

    @staticmethod
    async def list_logs(
        db: AsyncSession, page: int = 1, page_size: int = 50, search: str | None = None
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List history entries, newest first.

        Returns:
            Tuple of (entries, total count)
        """
        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(history_logs.c.action.ilike(pattern) | history_logs.c.user.ilike(pattern))

        total = (
            await db.execute(select(func.count()).select_from(history_logs).where(*conditions))
        ).scalar() or 0

        result = await db.execute(
            select(history_logs)
            .where(*conditions)
            .order_by(history_logs.c.timestamp.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return [dict(row._mapping) for row in result.fetchall()], total
