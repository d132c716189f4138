"""Notification sink: per-recipient inbox rows plus FCM push."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from firebase_admin import messaging
from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.config import settings
from labcenter.core.exceptions import NotFoundException
from labcenter.core.firebase import is_firebase_initialized
from labcenter.lifecycle.effects import Broadcast, NotificationTarget, Recipient
from labcenter.models.notifications import notifications, push_tokens
from labcenter.models.users import users

logger = structlog.get_logger(__name__)

BROADCAST_ROLES: dict[Broadcast, tuple[str, ...]] = {
    Broadcast.ALL_STAFF: ("staff", "admin"),
    Broadcast.ALL_ADMINS: ("admin",),
}


class NotificationService:
    """Service for the notification inbox and push delivery."""

    @staticmethod
    async def send_push_notification(
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> tuple[int, int]:
        """
        Send push notification to multiple devices.

        Args:
            tokens: List of FCM tokens
            title: Notification title
            body: Notification body
            data: Optional data payload

        Returns:
            Tuple of (success_count, failure_count)
        """
        if not tokens:
            return 0, 0

        if not settings.push_enabled or not is_firebase_initialized():
            logger.debug("push_skipped", title=title, token_count=len(tokens))
            return 0, 0

        try:
            message = messaging.MulticastMessage(
                notification=messaging.Notification(
                    title=title,
                    body=body,
                ),
                data=data or {},
                tokens=tokens,
                webpush=messaging.WebpushConfig(
                    notification=messaging.WebpushNotification(title=title, body=body),
                ),
                android=messaging.AndroidConfig(
                    priority="high",
                    notification=messaging.AndroidNotification(
                        sound="default",
                        priority="high",
                    ),
                ),
            )

            response = messaging.send_each_for_multicast(message)

            logger.info(
                "push_notification_sent",
                title=title,
                success_count=response.success_count,
                failure_count=response.failure_count,
            )

            return response.success_count, response.failure_count

        except Exception as e:
            logger.error("push_notification_failed", error=str(e), title=title)
            return 0, len(tokens)

    @staticmethod
    async def resolve_recipients(
        db: AsyncSession, target: NotificationTarget
    ) -> list[tuple[str, UUID]]:
        """
        Expand a notification target into ``(role, user_id)`` pairs.

        ``all_staff`` covers every active staff and admin user; ``all_admins``
        only the admins.
        """
        if isinstance(target, Recipient):
            return [(target.role, target.id)]

        query = select(users.c.role, users.c.id).where(
            users.c.role.in_(BROADCAST_ROLES[Broadcast(target)]),
            users.c.is_active == True,  # noqa: E712
        )
        result = await db.execute(query)
        return [(row.role, row.id) for row in result.fetchall()]

    @staticmethod
    async def emit(
        db: AsyncSession,
        title: str,
        message: str,
        target: NotificationTarget,
        link: str = "#",
    ) -> int:
        """
        Deliver a notification to every recipient of ``target``.

        Writes one inbox row per recipient, then attempts a push to their
        active devices. Failures are logged and never raised.

        Returns:
            Number of inbox rows written
        """
        try:
            recipients = await NotificationService.resolve_recipients(db, target)
            if not recipients:
                logger.info("notification_no_recipients", title=title, target=str(target))
                return 0

            await db.execute(
                notifications.insert(),
                [
                    {
                        "recipient_role": role,
                        "recipient_id": user_id,
                        "title": title,
                        "message": message,
                        "link": link,
                    }
                    for role, user_id in recipients
                ],
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.warning("notification_fanout_failed", title=title, error=str(e))
            return 0

        try:
            result = await db.execute(
                select(push_tokens.c.fcm_token).where(
                    push_tokens.c.user_id.in_([user_id for _, user_id in recipients]),
                    push_tokens.c.is_active == True,  # noqa: E712
                )
            )
            tokens = list(result.scalars().all())
            await NotificationService.send_push_notification(
                tokens=tokens, title=title, body=message, data={"link": link}
            )
        except Exception as e:
            logger.warning("notification_push_lookup_failed", title=title, error=str(e))

        logger.info("notification_emitted", title=title, recipients=len(recipients))
        return len(recipients)

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: UUID,
        unread_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        """
        List a user's inbox, newest first.

        Args:
            db: Database session
            user_id: Recipient user ID
            unread_only: Only return unread entries
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Dict with ``total``, ``unread`` and ``items``
        """
        conditions = [notifications.c.recipient_id == user_id]
        if unread_only:
            conditions.append(notifications.c.is_read == False)  # noqa: E712

        total = (
            await db.execute(
                select(func.count()).select_from(notifications).where(and_(*conditions))
            )
        ).scalar() or 0
        unread = (
            await db.execute(
                select(func.count())
                .select_from(notifications)
                .where(
                    notifications.c.recipient_id == user_id,
                    notifications.c.is_read == False,  # noqa: E712
                )
            )
        ).scalar() or 0

        result = await db.execute(
            select(notifications)
            .where(and_(*conditions))
            .order_by(notifications.c.created_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        items = [dict(row._mapping) for row in result.fetchall()]

        return {"total": total, "unread": unread, "page": page, "page_size": page_size, "items": items}

    @staticmethod
    async def mark_read(db: AsyncSession, user_id: UUID, notification_id: UUID) -> dict[str, Any]:
        """
        Mark one of the user's notifications as read.

        Raises:
            NotFoundException: If the notification does not belong to the user
        """
        result = await db.execute(
            update(notifications)
            .where(
                notifications.c.id == notification_id,
                notifications.c.recipient_id == user_id,
            )
            .values(is_read=True, read_at=datetime.now(UTC))
            .returning(notifications)
        )
        row = result.fetchone()
        if not row:
            await db.rollback()
            raise NotFoundException("Notification not found")
        await db.commit()
        return dict(row._mapping)

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: UUID) -> int:
        """Mark every unread notification of the user as read."""
        result = await db.execute(
            update(notifications)
            .where(
                notifications.c.recipient_id == user_id,
                notifications.c.is_read == False,  # noqa: E712
            )
            .values(is_read=True, read_at=datetime.now(UTC))
        )
        await db.commit()
        return result.rowcount

    @staticmethod
    async def register_token(
        db: AsyncSession,
        user_id: UUID,
        fcm_token: str,
        platform: str,
    ) -> dict[str, Any]:
        """
        Register or refresh an FCM token for a user.

        Other tokens of the same user on the same platform are deactivated.

        Returns:
            Created/updated token record
        """
        now = datetime.now(UTC)
        await db.execute(
            update(push_tokens)
            .where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.platform == platform,
                push_tokens.c.fcm_token != fcm_token,
            )
            .values(is_active=False)
        )

        result = await db.execute(
            select(push_tokens.c.id).where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.fcm_token == fcm_token,
            )
        )
        existing_id = result.scalar()

        if existing_id is not None:
            result = await db.execute(
                update(push_tokens)
                .where(push_tokens.c.id == existing_id)
                .values(is_active=True, last_used_at=now, platform=platform)
                .returning(push_tokens)
            )
        else:
            result = await db.execute(
                push_tokens.insert()
                .values(
                    user_id=user_id,
                    fcm_token=fcm_token,
                    platform=platform,
                    is_active=True,
                    last_used_at=now,
                )
                .returning(push_tokens)
            )
        row = result.fetchone()
        await db.commit()

        logger.info("push_token_registered", user_id=str(user_id), platform=platform)
        return dict(row._mapping)

    @staticmethod
    async def deactivate_token(db: AsyncSession, user_id: UUID, fcm_token: str) -> bool:
        """
        Deactivate a specific FCM token.

        Returns:
            True if token was deactivated
        """
        result = await db.execute(
            update(push_tokens)
            .where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.fcm_token == fcm_token,
            )
            .values(is_active=False)
        )
        await db.commit()
        return result.rowcount > 0
