"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from labcenter.lifecycle.report_composer import split_test_ids
from labcenter.lifecycle.state_machine import Action, AppointmentStatus
from labcenter.schemas.reports import ReportBlock, ReportBlockInput

__all__ = [
    "Action",
    "AppointmentCreate",
    "AppointmentFilters",
    "AppointmentListResponse",
    "AppointmentQueue",
    "AppointmentResponse",
    "AppointmentStatus",
    "FeedbackCreate",
    "ReportSubmission",
    "TransitionRequest",
]


class AppointmentQueue(str, Enum):
    """Staff dashboard tabs."""

    ALL = "all"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentCreate(BaseModel):
    """Booking request from a patient (or from staff on a patient's behalf)."""

    test_ids: list[str] = Field(..., min_length=1)
    date: date
    time_slot: str = Field(..., pattern=r"^\d{2}:\d{2}$", examples=["09:00"])
    address: str = Field(..., min_length=1, max_length=500)
    contact: str | None = Field(None, min_length=7, max_length=20)
    description: str | None = Field(None, max_length=1000)
    patient_name: str | None = Field(None, min_length=1, max_length=200)
    # Staff bookings only
    patient_id: UUID | None = None

    @field_validator("test_ids", mode="before")
    @classmethod
    def normalize_test_ids(cls, v: str | list[str]) -> list[str]:
        """Accept a list or the comma-joined legacy form."""
        if not isinstance(v, (str, list, tuple)):
            raise ValueError("test_ids must be a list or a comma-separated string")
        return split_test_ids(v)

    @field_validator("contact")
    @classmethod
    def validate_contact(cls, v: str | None) -> str | None:
        """Validate phone number format."""
        if v is None:
            return v
        cleaned = (
            v.replace("-", "").replace(" ", "").replace("(", "").replace(")", "").replace("+", "")
        )
        if not cleaned.isdigit():
            raise ValueError("Phone number must contain only digits and separators")
        return v


class AppointmentResponse(BaseModel):
    """Appointment as returned by the API."""

    id: UUID
    patient_id: UUID
    patient_name: str
    test_ids: list[str]
    test_names: list[str]
    date: datetime
    time_slot: str
    status: AppointmentStatus
    phlebo_id: UUID | None = None
    phlebo_name: str | None = None
    address: str
    contact: str | None = None
    description: str | None = None
    total_cost: float
    report_data: list[ReportBlock] | None = None
    feedback_submitted: bool = False
    notes: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    progress: int = 0
    progress_label: str = ""
    allowed_actions: list[Action] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    queue: AppointmentQueue = AppointmentQueue.ALL
    status: AppointmentStatus | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class TransitionRequest(BaseModel):
    """Apply a workflow action to an appointment."""

    action: Action
    phlebo_id: UUID | None = None
    reason: str | None = Field(None, max_length=500)
    expected_version: int | None = Field(None, ge=1)


class ReportSubmission(BaseModel):
    """Report values entered by staff."""

    report_data: list[ReportBlockInput] = Field(default_factory=list)
    expected_version: int | None = Field(None, ge=1)


class FeedbackCreate(BaseModel):
    """Patient feedback on a completed appointment."""

    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=1000)
