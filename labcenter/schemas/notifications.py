"""Notification inbox and push token schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class PushTokenRegister(BaseModel):
    """Schema for registering FCM token."""

    fcm_token: str = Field(..., description="Firebase Cloud Messaging token")
    platform: str = Field(
        ...,
        description="Platform type",
        pattern="^(android|ios|web)$",
    )


class PushTokenResponse(BaseModel):
    """Schema for push token response."""

    id: UUID
    user_id: UUID
    fcm_token: str
    platform: str
    is_active: bool
    last_used_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationRecord(BaseModel):
    """Inbox entry for one recipient."""

    id: UUID
    recipient_role: str
    recipient_id: UUID
    title: str
    message: str
    link: str
    is_read: bool
    created_at: datetime
    read_at: datetime | None = None

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Paginated inbox."""

    total: int
    unread: int
    page: int
    page_size: int
    items: list[NotificationRecord]


class MarkReadResponse(BaseModel):
    """Number of notifications marked read."""

    updated: int
