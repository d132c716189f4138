"""Appointment service: booking, reads, and version-checked transitions."""

from collections.abc import Iterable
from datetime import UTC, datetime, time
from typing import Any
from uuid import UUID

import structlog
from prometheus_client import Counter
from sqlalchemy import and_, delete, func, select, true, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.config import settings
from labcenter.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    StaleVersionException,
    ValidationException,
)
from labcenter.core.redis_client import CacheManager
from labcenter.lifecycle.assignment import resolve_phlebo
from labcenter.lifecycle.effects import Broadcast, Effect, Notify, RecordHistory
from labcenter.lifecycle.report_composer import (
    annotate_report,
    compose_report_data,
    merge_report_values,
)
from labcenter.lifecycle.state_machine import (
    FINALIZED_STATUSES,
    REPORT_ENTRY_STATUSES,
    Action,
    ActorContext,
    AppointmentStatus,
    Role,
    allowed_actions,
    apply_transition,
    effective_role,
    progress,
)
from labcenter.models.appointments import appointments
from labcenter.models.history import reviews
from labcenter.models.users import users
from labcenter.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentQueue,
    AppointmentResponse,
    FeedbackCreate,
    ReportSubmission,
    TransitionRequest,
)
from labcenter.schemas.reports import ReportDraftResponse
from labcenter.services.catalog_service import CatalogService
from labcenter.services.history_service import HistoryService
from labcenter.services.notification_service import NotificationService
from labcenter.services.user_service import UserService

logger = structlog.get_logger(__name__)

APPOINTMENTS_BOOKED = Counter("labcenter_appointments_booked_total", "Appointments booked", ["booked_by_role"])
TRANSITIONS_APPLIED = Counter(
    "labcenter_appointment_transitions_total",
    "Applied appointment workflow actions",
    ["action", "to_status"],
)
TRANSITION_CONFLICTS = Counter(
    "labcenter_appointment_conflicts_total", "Transitions rejected because the appointment changed"
)

QUEUE_STATUSES: dict[AppointmentQueue, tuple[AppointmentStatus, ...]] = {
    AppointmentQueue.PENDING: (AppointmentStatus.PENDING,),
    AppointmentQueue.IN_PROGRESS: (
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.SAMPLE_COLLECTED,
        AppointmentStatus.RECEIVED,
        AppointmentStatus.IN_PROCESS,
        AppointmentStatus.REPORTING,
    ),
    AppointmentQueue.COMPLETED: (AppointmentStatus.REPORT_UPLOADED, AppointmentStatus.COMPLETED),
    AppointmentQueue.CANCELLED: (AppointmentStatus.CANCELLED,),
}

PHLEBO_HISTORY_STATUSES = (
    AppointmentStatus.SAMPLE_COLLECTED,
    AppointmentStatus.RECEIVED,
    AppointmentStatus.IN_PROCESS,
    AppointmentStatus.REPORTING,
    AppointmentStatus.REPORT_UPLOADED,
    AppointmentStatus.COMPLETED,
)

REPORT_ACTIONS = (Action.SAVE_PROGRESS, Action.SEND_TO_PATIENT)
PHLEBO_BINDING_ACTIONS = (Action.CONFIRM, Action.CONFIRM_AND_ASSIGN, Action.ASSIGN)


def actor_from_user(user: dict[str, Any]) -> ActorContext:
    """Build the lifecycle actor from an authenticated user record."""
    return ActorContext(role=Role(user["role"]), id=user["id"], name=user.get("full_name") or "")


class AppointmentService:
    """Service for managing appointments."""

    def __init__(self, db: AsyncSession, cache: CacheManager | None = None):
        """Initialize service with database session and optional cache."""
        self.db = db
        self.cache = cache
        self.catalog = CatalogService(db, cache)

    async def _fetch(self, appointment_id: UUID) -> dict[str, Any]:
        result = await self.db.execute(select(appointments).where(appointments.c.id == appointment_id))
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return dict(row._mapping)

    @staticmethod
    def _check_access(appointment: dict[str, Any], actor: ActorContext) -> None:
        role = effective_role(actor.role)
        if role is Role.PATIENT and str(appointment["patient_id"]) != str(actor.id):
            raise ForbiddenException("Access denied to this appointment")
        if role is Role.PHLEBO and str(appointment.get("phlebo_id")) != str(actor.id):
            raise ForbiddenException("This appointment is not assigned to you")

    @staticmethod
    def _to_response(appointment: dict[str, Any], actor: ActorContext) -> AppointmentResponse:
        pct, label = progress(appointment["status"])
        return AppointmentResponse.model_validate(
            {
                **appointment,
                "progress": pct,
                "progress_label": label,
                "allowed_actions": allowed_actions(appointment, actor),
            }
        )

    async def _emit(self, effects: Iterable[Effect]) -> None:
        """Emit notifications and history entries; never raises."""
        for effect in effects:
            if isinstance(effect, Notify):
                await NotificationService.emit(
                    self.db,
                    title=effect.title,
                    message=effect.message,
                    target=effect.target,
                    link=effect.link,
                )
            elif isinstance(effect, RecordHistory):
                await HistoryService.log(self.db, user=effect.user, action=effect.action)

    async def _write(
        self, appointment: dict[str, Any], values: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Apply ``values`` in one statement, guarded by the version that was read.

        Raises:
            StaleVersionException: If another writer got there first
        """
        read_version = appointment["version"]
        stmt = (
            update(appointments)
            .where(
                appointments.c.id == appointment["id"],
                appointments.c.version == read_version,
            )
            .values(**values, version=read_version + 1, updated_at=datetime.now(UTC))
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()

        if not row:
            await self.db.rollback()
            current = await self.db.execute(
                select(appointments.c.version).where(appointments.c.id == appointment["id"])
            )
            actual = current.scalar()
            if actual is None:
                raise NotFoundException("Appointment not found")
            TRANSITION_CONFLICTS.inc()
            logger.info(
                "appointment_version_conflict",
                appointment_id=str(appointment["id"]),
                expected=read_version,
                actual=actual,
            )
            raise StaleVersionException(str(appointment["id"]), read_version, actual)

        await self.db.commit()
        return dict(row._mapping)

    async def book_appointment(
        self, user: dict[str, Any], data: AppointmentCreate, now: datetime | None = None
    ) -> AppointmentResponse:
        """
        Book a new appointment.

        Patients book for themselves; staff book on behalf of a registered
        patient by passing ``patient_id``.

        Args:
            user: Authenticated user
            data: Booking request
            now: Clock override

        Returns:
            The created appointment (status ``Pending``)

        Raises:
            ForbiddenException: If the caller may not book for this patient
            NotFoundException: If the patient does not exist
            ValidationException: Unknown tests, a slot in the past or outside clinic hours
        """
        actor = actor_from_user(user)
        role = effective_role(actor.role)

        if role is Role.PATIENT:
            if data.patient_id is not None and data.patient_id != user["id"]:
                raise ForbiddenException("Patients can only book for themselves")
            patient = user
        elif role is Role.STAFF:
            if data.patient_id is None:
                raise ValidationException("Please select a patient")
            patient = await UserService(self.cache).get_user_by_id(self.db, data.patient_id)
            if not patient or patient["role"] != Role.PATIENT.value:
                raise NotFoundException("Patient not found")
        else:
            raise ForbiddenException("Phlebotomists cannot book appointments")

        if data.time_slot not in settings.time_slots:
            raise ValidationException(
                f"Invalid time slot {data.time_slot}; choose one of {', '.join(settings.time_slots)}"
            )
        hour, minute = (int(part) for part in data.time_slot.split(":"))
        scheduled = datetime.combine(data.date, time(hour, minute), tzinfo=UTC)
        if scheduled < (now or datetime.now(UTC)):
            raise ValidationException("Appointment time cannot be in the past")

        tests = await self.catalog.get_tests_by_ids(data.test_ids)
        test_names = [tests[test_id]["name"] for test_id in data.test_ids]
        total_cost = round(sum(float(tests[test_id]["cost"]) for test_id in data.test_ids), 2)
        patient_name = (data.patient_name or patient["full_name"]).strip()

        values = {
            "patient_id": patient["id"],
            "patient_name": patient_name,
            "test_ids": data.test_ids,
            "test_names": test_names,
            "total_cost": total_cost,
            "address": data.address,
            "contact": data.contact or patient.get("contact"),
            "description": data.description,
            "date": scheduled,
            "time_slot": data.time_slot,
            "status": AppointmentStatus.PENDING.value,
            "version": 1,
            "booked_by": actor.label,
        }
        result = await self.db.execute(appointments.insert().values(**values).returning(appointments))
        appointment = dict(result.fetchone()._mapping)
        await self.db.commit()

        APPOINTMENTS_BOOKED.labels(booked_by_role=role.value).inc()
        short_id = str(appointment["id"])[:5]
        tests_label = ", ".join(test_names)
        logger.info(
            "appointment_booked",
            appointment_id=str(appointment["id"]),
            patient_id=str(patient["id"]),
            tests=data.test_ids,
            total_cost=total_cost,
        )
        await self._emit(
            [
                RecordHistory(
                    user=actor.label,
                    action=f"Booked new appointment #{short_id} for {patient_name} ({tests_label}).",
                ),
                Notify(
                    title="New Appointment",
                    message=f"{patient_name} booked a new appointment for {tests_label}.",
                    target=Broadcast.ALL_STAFF,
                    link="/staff/dashboard",
                ),
            ]
        )
        return self._to_response(appointment, actor)

    async def get_appointment(self, appointment_id: UUID, user: dict[str, Any]) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If user doesn't have access
        """
        actor = actor_from_user(user)
        appointment = await self._fetch(appointment_id)
        self._check_access(appointment, actor)
        return self._to_response(appointment, actor)

    async def _paginate(
        self,
        conditions: list[Any],
        order_by: Any,
        page: int,
        page_size: int,
        actor: ActorContext,
    ) -> AppointmentListResponse:
        where = and_(*conditions) if conditions else true()
        count_stmt = select(func.count()).select_from(appointments).where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(appointments)
            .where(where)
            .order_by(order_by, appointments.c.created_at)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        rows = (await self.db.execute(stmt)).fetchall()

        return AppointmentListResponse(
            total=total,
            page=page,
            page_size=page_size,
            items=[self._to_response(dict(row._mapping), actor) for row in rows],
        )

    @staticmethod
    def _filter_conditions(filters: AppointmentFilters) -> list[Any]:
        conditions: list[Any] = []
        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)
        if filters.from_date:
            conditions.append(appointments.c.date >= filters.from_date)
        if filters.to_date:
            conditions.append(appointments.c.date <= filters.to_date)
        if filters.search:
            conditions.append(appointments.c.patient_name.ilike(f"%{filters.search}%"))
        return conditions

    async def list_for_patient(
        self, user: dict[str, Any], filters: AppointmentFilters
    ) -> AppointmentListResponse:
        """A patient's own appointments, newest first."""
        conditions = [appointments.c.patient_id == user["id"], *self._filter_conditions(filters)]
        return await self._paginate(
            conditions,
            appointments.c.date.desc(),
            filters.page,
            filters.page_size,
            actor_from_user(user),
        )

    async def list_queue(self, user: dict[str, Any], filters: AppointmentFilters) -> AppointmentListResponse:
        """Staff dashboard queue, ordered by scheduled date ascending."""
        conditions = self._filter_conditions(filters)
        if filters.queue is not AppointmentQueue.ALL:
            statuses = [status.value for status in QUEUE_STATUSES[filters.queue]]
            conditions.append(appointments.c.status.in_(statuses))
        return await self._paginate(
            conditions,
            appointments.c.date.asc(),
            filters.page,
            filters.page_size,
            actor_from_user(user),
        )

    async def list_for_phlebo(
        self, user: dict[str, Any], history: bool = False, page: int = 1, page_size: int = 20
    ) -> AppointmentListResponse:
        """
        Appointments bound to the calling phlebotomist.

        Args:
            user: Authenticated phlebotomist
            history: Collected-and-later appointments instead of open assignments
            page: Page number
            page_size: Items per page
        """
        if history:
            statuses = [status.value for status in PHLEBO_HISTORY_STATUSES]
            order_by = appointments.c.date.desc()
        else:
            statuses = [AppointmentStatus.CONFIRMED.value]
            order_by = appointments.c.date.asc()

        conditions = [appointments.c.phlebo_id == user["id"], appointments.c.status.in_(statuses)]
        return await self._paginate(conditions, order_by, page, page_size, actor_from_user(user))

    async def transition(
        self,
        appointment_id: UUID,
        user: dict[str, Any],
        request: TransitionRequest,
        submitted_report: list[dict[str, Any]] | None = None,
    ) -> AppointmentResponse:
        """
        Apply a workflow action to an appointment.

        The appointment is read, the action is validated and computed by the
        lifecycle module, and all changed fields are written in a single
        version-checked update. Notifications and history entries are
        emitted after the commit.

        Args:
            appointment_id: Appointment ID
            user: Authenticated user applying the action
            request: Action, optional phlebotomist, reason and expected version
            submitted_report: Report values for report-entry actions

        Returns:
            The updated appointment

        Raises:
            InvalidTransitionException: Action not allowed in the current status
            StaleVersionException: The appointment changed since it was read
        """
        actor = actor_from_user(user)
        if effective_role(actor.role) is Role.PATIENT:
            raise ForbiddenException("Patients cannot update appointment status")

        appointment = await self._fetch(appointment_id)
        if request.expected_version is not None and request.expected_version != appointment["version"]:
            raise StaleVersionException(str(appointment_id), request.expected_version, appointment["version"])

        phlebo = None
        if request.action in PHLEBO_BINDING_ACTIONS and request.phlebo_id is not None:
            candidates = await UserService(self.cache).list_phlebos(self.db)
            phlebo = resolve_phlebo(request.phlebo_id, candidates)

        report_data = None
        if request.action in REPORT_ACTIONS:
            report_data = await self._compose(appointment)
            report_data = merge_report_values(report_data, submitted_report or [])

        outcome = apply_transition(
            appointment,
            request.action,
            actor,
            phlebo=phlebo,
            reason=request.reason,
            report_data=report_data,
        )
        updated = await self._write(appointment, outcome.updates)
        TRANSITIONS_APPLIED.labels(action=outcome.action.value, to_status=outcome.to_status.value).inc()

        logger.info(
            "appointment_transitioned",
            appointment_id=str(appointment_id),
            action=outcome.action.value,
            from_status=outcome.from_status.value,
            to_status=outcome.to_status.value,
            actor=actor.label,
            version=updated["version"],
            first_completion=outcome.first_completion,
        )
        await self._emit(outcome.effects)
        return self._to_response(updated, actor)

    async def _compose(self, appointment: dict[str, Any]) -> list[dict[str, Any]]:
        test_ids = appointment["test_ids"]
        formats = await self.catalog.get_formats(
            test_id for test_id in test_ids
            if test_id not in {block["test_id"] for block in appointment.get("report_data") or []}
        )
        return compose_report_data(
            test_ids,
            appointment.get("report_data"),
            formats,
            test_names=appointment.get("test_names"),
        )

    async def get_report_draft(self, appointment_id: UUID, user: dict[str, Any]) -> ReportDraftResponse:
        """
        Report data for the reporting screen, composed but not persisted.

        Raises:
            ConflictException: If report entry has not started
        """
        appointment = await self._fetch(appointment_id)
        status = AppointmentStatus(appointment["status"])
        if status not in REPORT_ENTRY_STATUSES:
            raise ConflictException(f"Report entry is not open for a '{status.value}' appointment")

        report_data = await self._compose(appointment)
        return ReportDraftResponse(
            appointment_id=appointment["id"],
            status=status.value,
            version=appointment["version"],
            patient_name=appointment["patient_name"],
            report_data=annotate_report(report_data),
        )

    async def get_patient_report(self, appointment_id: UUID, user: dict[str, Any]) -> ReportDraftResponse:
        """
        Finalized report for the patient who owns the appointment.

        Raises:
            ConflictException: If the report has not been sent yet
        """
        actor = actor_from_user(user)
        appointment = await self._fetch(appointment_id)
        self._check_access(appointment, actor)
        status = AppointmentStatus(appointment["status"])
        if status not in FINALIZED_STATUSES:
            raise ConflictException("The report is not ready yet")

        return ReportDraftResponse(
            appointment_id=appointment["id"],
            status=status.value,
            version=appointment["version"],
            patient_name=appointment["patient_name"],
            report_data=annotate_report(appointment.get("report_data") or []),
        )

    async def save_report(
        self, appointment_id: UUID, user: dict[str, Any], submission: ReportSubmission, send: bool = False
    ) -> AppointmentResponse:
        """Save report values, and optionally send the report to the patient."""
        request = TransitionRequest(
            action=Action.SEND_TO_PATIENT if send else Action.SAVE_PROGRESS,
            expected_version=submission.expected_version,
        )
        submitted = [block.model_dump() for block in submission.report_data]
        return await self.transition(appointment_id, user, request, submitted_report=submitted)

    async def submit_feedback(
        self, appointment_id: UUID, user: dict[str, Any], data: FeedbackCreate
    ) -> dict[str, Any]:
        """
        Record a patient's one-time feedback on a finished appointment.

        Raises:
            ConflictException: If feedback was already submitted or the
                report is not ready
        """
        actor = actor_from_user(user)
        appointment = await self._fetch(appointment_id)
        self._check_access(appointment, actor)
        if str(appointment["patient_id"]) != str(user["id"]):
            raise ForbiddenException("Only the patient can leave feedback")
        if AppointmentStatus(appointment["status"]) not in FINALIZED_STATUSES:
            raise ConflictException("Feedback can be left once the report is ready")
        if appointment["feedback_submitted"]:
            raise ConflictException("Feedback has already been submitted for this appointment")

        try:
            result = await self.db.execute(
                reviews.insert()
                .values(
                    appointment_id=appointment["id"],
                    patient_id=appointment["patient_id"],
                    patient_name=appointment["patient_name"],
                    test_name=", ".join(appointment["test_names"]),
                    rating=data.rating,
                    comment=data.comment,
                )
                .returning(reviews)
            )
            review = dict(result.fetchone()._mapping)
        except IntegrityError:
            await self.db.rollback()
            raise ConflictException("Feedback has already been submitted for this appointment")

        await self._write(appointment, {"feedback_submitted": True})
        logger.info("feedback_submitted", appointment_id=str(appointment_id), rating=data.rating)
        return review

    async def delete_appointment(self, appointment_id: UUID, user: dict[str, Any]) -> None:
        """Hard-delete an appointment (admin only)."""
        appointment = await self._fetch(appointment_id)
        await self.db.execute(delete(reviews).where(reviews.c.appointment_id == appointment_id))
        await self.db.execute(delete(appointments).where(appointments.c.id == appointment_id))
        await self.db.commit()

        actor = actor_from_user(user)
        logger.info("appointment_deleted", appointment_id=str(appointment_id), actor=actor.label)
        await self._emit(
            [
                RecordHistory(
                    user=actor.label,
                    action=(
                        f"Deleted appointment #{str(appointment_id)[:5]} "
                        f"for {appointment['patient_name']}."
                    ),
                )
            ]
        )

    async def stats(self) -> dict[str, Any]:
        """Counts for the admin dashboard."""
        by_status = await self.db.execute(
            select(appointments.c.status, func.count()).group_by(appointments.c.status)
        )
        by_role = await self.db.execute(select(users.c.role, func.count()).group_by(users.c.role))
        revenue = await self.db.execute(
            select(func.coalesce(func.sum(appointments.c.total_cost), 0)).where(
                appointments.c.status.in_([status.value for status in FINALIZED_STATUSES])
            )
        )
        return {
            "appointments": {status: count for status, count in by_status.fetchall()},
            "users": {role: count for role, count in by_role.fetchall()},
            "revenue": float(revenue.scalar() or 0),
        }
