"""Notification inbox and push token endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from labcenter.core.exceptions import NotFoundException
from labcenter.dependencies import CurrentUser, DatabaseSession
from labcenter.schemas.notifications import (
    MarkReadResponse,
    NotificationListResponse,
    NotificationRecord,
    PushTokenRegister,
    PushTokenResponse,
)
from labcenter.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get(
    "",
    response_model=NotificationListResponse,
    status_code=status.HTTP_200_OK,
    summary="List my notifications",
)
async def list_notifications(
    current_user: CurrentUser,
    db: DatabaseSession,
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> NotificationListResponse:
    """The caller's inbox, newest first."""
    inbox = await NotificationService.list_for_user(
        db, current_user["id"], unread_only=unread_only, page=page, page_size=page_size
    )
    return NotificationListResponse.model_validate(inbox)


@router.post(
    "/read-all",
    response_model=MarkReadResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark all notifications read",
)
async def mark_all_read(current_user: CurrentUser, db: DatabaseSession) -> MarkReadResponse:
    """Clear the unread badge."""
    return MarkReadResponse(updated=await NotificationService.mark_all_read(db, current_user["id"]))


@router.post(
    "/{notification_id}/read",
    response_model=NotificationRecord,
    status_code=status.HTTP_200_OK,
    summary="Mark a notification read",
)
async def mark_read(
    notification_id: UUID, current_user: CurrentUser, db: DatabaseSession
) -> NotificationRecord:
    """Mark one of the caller's notifications as read."""
    record = await NotificationService.mark_read(db, current_user["id"], notification_id)
    return NotificationRecord.model_validate(record)


@router.post(
    "/tokens",
    response_model=PushTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register FCM token",
)
async def register_token(
    data: PushTokenRegister, current_user: CurrentUser, db: DatabaseSession
) -> PushTokenResponse:
    """Register this device for push notifications."""
    token = await NotificationService.register_token(
        db, current_user["id"], fcm_token=data.fcm_token, platform=data.platform
    )
    return PushTokenResponse.model_validate(token)


@router.delete(
    "/tokens/{fcm_token}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate FCM token",
)
async def deactivate_token(fcm_token: str, current_user: CurrentUser, db: DatabaseSession) -> None:
    """Stop sending push notifications to a device."""
    if not await NotificationService.deactivate_token(db, current_user["id"], fcm_token):
        raise NotFoundException("Push token not found")
