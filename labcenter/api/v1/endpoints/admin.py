"""Admin-only endpoints: audit trail, reviews and dashboard metrics."""

import math

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select

from labcenter.dependencies import AdminUser, Cache, DatabaseSession
from labcenter.lifecycle.effects import Broadcast
from labcenter.models.history import reviews
from labcenter.models.notifications import notifications
from labcenter.schemas.admin import (
    AdminMetricsResponse,
    HistoryLogListResponse,
    HistoryLogRecord,
    ReviewListResponse,
    ReviewRecord,
)
from labcenter.services.appointment_service import AppointmentService
from labcenter.services.history_service import HistoryService
from labcenter.services.notification_service import NotificationService

router = APIRouter(prefix="/admin", tags=["Admin"])


class BroadcastRequest(BaseModel):
    """Announcement to a group of users."""

    title: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=500)
    target: Broadcast = Broadcast.ALL_STAFF
    link: str = Field(default="#", max_length=200)


@router.get(
    "/history-logs",
    response_model=HistoryLogListResponse,
    summary="List history logs (admin only)",
)
async def list_history_logs(
    _: AdminUser,
    db: DatabaseSession,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page"),
    search: str | None = Query(None, description="Search by user or action"),
) -> HistoryLogListResponse:
    """Audit trail of bookings and workflow actions, newest first."""
    logs, total = await HistoryService.list_logs(db, page=page, page_size=page_size, search=search)
    return HistoryLogListResponse(
        logs=[HistoryLogRecord.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get(
    "/reviews",
    response_model=ReviewListResponse,
    summary="List patient reviews (admin only)",
)
async def list_reviews(
    _: AdminUser,
    db: DatabaseSession,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    min_rating: int | None = Query(None, ge=1, le=5),
) -> ReviewListResponse:
    """Patient feedback, newest first, with the average rating."""
    conditions = []
    if min_rating is not None:
        conditions.append(reviews.c.rating >= min_rating)

    summary = await db.execute(
        select(func.count(), func.avg(reviews.c.rating)).select_from(reviews).where(*conditions)
    )
    total, average = summary.one()

    result = await db.execute(
        select(reviews)
        .where(*conditions)
        .order_by(reviews.c.created_at.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    )

    return ReviewListResponse(
        reviews=[ReviewRecord.model_validate(dict(row._mapping)) for row in result.fetchall()],
        total=total or 0,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
        average_rating=round(float(average), 2) if average is not None else None,
    )


@router.get(
    "/stats",
    response_model=AdminMetricsResponse,
    summary="Dashboard metrics (admin only)",
)
async def get_stats(admin_user: AdminUser, db: DatabaseSession, cache: Cache) -> AdminMetricsResponse:
    """Appointment counts by status, user counts by role and revenue."""
    stats = await AppointmentService(db, cache).stats()
    unread = await db.execute(
        select(func.count())
        .select_from(notifications)
        .where(
            notifications.c.recipient_id == admin_user["id"],
            notifications.c.is_read == False,  # noqa: E712
        )
    )
    return AdminMetricsResponse(**stats, unread_notifications=unread.scalar() or 0)


@router.post(
    "/notifications",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Broadcast a notification (admin only)",
)
async def broadcast_notification(
    data: BroadcastRequest,
    _: AdminUser,
    db: DatabaseSession,
) -> dict[str, int]:
    """Send an announcement to all staff or all admins."""
    delivered = await NotificationService.emit(
        db, title=data.title, message=data.message, target=data.target, link=data.link
    )
    return {"recipients": delivered}
