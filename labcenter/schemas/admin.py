"""Admin-specific schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class HistoryLogRecord(BaseModel):
    """Audit trail entry."""

    id: UUID
    user: str
    action: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class HistoryLogListResponse(BaseModel):
    """Response schema for history logs, newest first."""

    logs: list[HistoryLogRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


class ReviewRecord(BaseModel):
    """Patient feedback on an appointment."""

    id: UUID
    appointment_id: UUID
    patient_id: UUID
    patient_name: str
    test_name: str
    rating: int
    comment: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewListResponse(BaseModel):
    """Response schema for review listing."""

    reviews: list[ReviewRecord]
    total: int
    page: int
    page_size: int
    total_pages: int
    average_rating: float | None = None


class AdminMetricsResponse(BaseModel):
    """Response schema for admin metrics."""

    users: dict[str, int] = Field(
        ..., description="User counts by role", examples=[{"patient": 120, "phlebo": 4}]
    )
    appointments: dict[str, int] = Field(
        ..., description="Appointment counts by status", examples=[{"Pending": 3, "Completed": 40}]
    )
    revenue: float = Field(..., description="Total cost of completed appointments")
    unread_notifications: int = 0
