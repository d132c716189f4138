"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from labcenter.dependencies import (
    AdminUser,
    Cache,
    CurrentUser,
    DatabaseSession,
    PatientUser,
    PhleboUser,
    StaffUser,
    WorkflowUser,
)
from labcenter.schemas.admin import ReviewRecord
from labcenter.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentQueue,
    AppointmentResponse,
    AppointmentStatus,
    FeedbackCreate,
    ReportSubmission,
    TransitionRequest,
)
from labcenter.schemas.reports import ReportDraftResponse
from labcenter.services.appointment_service import AppointmentService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book appointment",
)
async def book_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """
    Book a home sample collection.

    Patients book for themselves. Staff book for a registered patient by
    passing ``patient_id``.
    """
    return await AppointmentService(db, cache).book_appointment(current_user, data)


@router.get(
    "/me",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List my appointments",
)
async def list_my_appointments(
    current_user: PatientUser,
    db: DatabaseSession,
    cache: Cache,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """A patient's appointments with progress, newest first."""
    filters = AppointmentFilters(status=status_filter, page=page, page_size=page_size)
    return await AppointmentService(db, cache).list_for_patient(current_user, filters)


@router.get(
    "/queue",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="Staff appointment queue",
)
async def list_queue(
    current_user: StaffUser,
    db: DatabaseSession,
    cache: Cache,
    queue: AppointmentQueue = Query(AppointmentQueue.ALL),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    Appointments for the staff dashboard tabs, earliest first.

    Args:
        queue: ``pending``, ``in_progress``, ``completed``, ``cancelled`` or ``all``
        status_filter: Narrow to one status
        from_date: Scheduled on or after
        to_date: Scheduled on or before
        search: Patient name contains
    """
    filters = AppointmentFilters(
        queue=queue,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        search=search,
        page=page,
        page_size=page_size,
    )
    return await AppointmentService(db, cache).list_queue(current_user, filters)


@router.get(
    "/assigned",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="Phlebotomist assignments",
)
async def list_assigned(
    current_user: PhleboUser,
    db: DatabaseSession,
    cache: Cache,
    history: bool = Query(False, description="Collected and later instead of open assignments"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """Appointments assigned to the calling phlebotomist."""
    return await AppointmentService(db, cache).list_for_phlebo(
        current_user, history=history, page=page, page_size=page_size
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """Get one appointment, with the actions the caller may apply to it."""
    return await AppointmentService(db, cache).get_appointment(appointment_id, current_user)


@router.post(
    "/{appointment_id}/transition",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Apply a workflow action",
)
async def transition_appointment(
    appointment_id: UUID,
    data: TransitionRequest,
    current_user: WorkflowUser,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """
    Move an appointment through its lifecycle.

    Returns 409 when the action is not valid for the current status, or when
    ``expected_version`` no longer matches (reload and retry).
    """
    return await AppointmentService(db, cache).transition(appointment_id, current_user, data)


@router.get(
    "/{appointment_id}/report",
    response_model=ReportDraftResponse,
    status_code=status.HTTP_200_OK,
    summary="Report entry draft",
)
async def get_report_draft(
    appointment_id: UUID,
    current_user: StaffUser,
    db: DatabaseSession,
    cache: Cache,
) -> ReportDraftResponse:
    """Report data seeded from the test formats, with out-of-range flags."""
    return await AppointmentService(db, cache).get_report_draft(appointment_id, current_user)


@router.put(
    "/{appointment_id}/report",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Save report progress",
)
async def save_report(
    appointment_id: UUID,
    data: ReportSubmission,
    current_user: StaffUser,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """Persist entered values without changing the status."""
    return await AppointmentService(db, cache).save_report(appointment_id, current_user, data)


@router.post(
    "/{appointment_id}/report/send",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Send report to patient",
)
async def send_report(
    appointment_id: UUID,
    data: ReportSubmission,
    current_user: StaffUser,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """
    Save values and complete the appointment.

    Re-sending an already completed report updates the values without
    notifying the patient again.
    """
    return await AppointmentService(db, cache).save_report(
        appointment_id, current_user, data, send=True
    )


@router.get(
    "/{appointment_id}/result",
    response_model=ReportDraftResponse,
    status_code=status.HTTP_200_OK,
    summary="View finished report",
)
async def get_result(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    cache: Cache,
) -> ReportDraftResponse:
    """The finalized report, once it has been sent to the patient."""
    return await AppointmentService(db, cache).get_patient_report(appointment_id, current_user)


@router.post(
    "/{appointment_id}/feedback",
    response_model=ReviewRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Leave feedback",
)
async def submit_feedback(
    appointment_id: UUID,
    data: FeedbackCreate,
    current_user: PatientUser,
    db: DatabaseSession,
    cache: Cache,
) -> ReviewRecord:
    """Rate a completed appointment (once)."""
    review = await AppointmentService(db, cache).submit_feedback(appointment_id, current_user, data)
    return ReviewRecord.model_validate(review)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    current_user: AdminUser,
    db: DatabaseSession,
    cache: Cache,
) -> None:
    """Permanently remove an appointment (admin only)."""
    await AppointmentService(db, cache).delete_appointment(appointment_id, current_user)
