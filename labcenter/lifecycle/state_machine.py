"""Appointment lifecycle: statuses, the transition table and its guards.

This module is the single authority on which action a role may apply to an
appointment in a given status. It performs no I/O: ``apply_transition``
returns the field updates to write (as one merged update) together with the
notifications and history entries the caller must emit afterwards.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from labcenter.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    ValidationException,
)
from labcenter.lifecycle.assignment import (
    PhleboBinding,
    bind_fields,
    check_binding_consistency,
    clear_fields,
    is_assigned,
)
from labcenter.lifecycle.effects import Broadcast, Effect, Notify, Recipient, RecordHistory
from labcenter.lifecycle.report_composer import check_report_matches_tests, missing_values


class AppointmentStatus(str, Enum):
    """Appointment status, in workflow order (``Cancelled`` is off the path)."""

    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    SAMPLE_COLLECTED = "Sample Collected"
    RECEIVED = "Received"
    IN_PROCESS = "In Process"
    REPORTING = "Reporting"
    REPORT_UPLOADED = "Report Uploaded"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Role(str, Enum):
    """User roles."""

    PATIENT = "patient"
    PHLEBO = "phlebo"
    STAFF = "staff"
    ADMIN = "admin"


class Action(str, Enum):
    """Actions that can be applied to an appointment."""

    CONFIRM = "confirm"
    CONFIRM_AND_ASSIGN = "confirm_and_assign"
    ASSIGN = "assign"
    CANCEL = "cancel"
    MARK_SAMPLE_COLLECTED = "mark_sample_collected"
    RELEASE = "release"
    MARK_RECEIVED = "mark_received"
    MARK_IN_PROCESS = "mark_in_process"
    SAVE_PROGRESS = "save_progress"
    SEND_TO_PATIENT = "send_to_patient"


STATUS_ORDER: tuple[AppointmentStatus, ...] = (
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.SAMPLE_COLLECTED,
    AppointmentStatus.RECEIVED,
    AppointmentStatus.IN_PROCESS,
    AppointmentStatus.REPORTING,
    AppointmentStatus.REPORT_UPLOADED,
    AppointmentStatus.COMPLETED,
)

REPORT_ENTRY_STATUSES = frozenset(
    {
        AppointmentStatus.IN_PROCESS,
        AppointmentStatus.REPORTING,
        AppointmentStatus.REPORT_UPLOADED,
        AppointmentStatus.COMPLETED,
    }
)

FINALIZED_STATUSES = frozenset({AppointmentStatus.REPORT_UPLOADED, AppointmentStatus.COMPLETED})

# Staff transitions into these statuses notify the patient
PATIENT_UPDATE_STATUSES = frozenset(
    {AppointmentStatus.CONFIRMED, AppointmentStatus.RECEIVED, AppointmentStatus.IN_PROCESS}
)

PROGRESS: dict[AppointmentStatus, tuple[int, str]] = {
    AppointmentStatus.PENDING: (0, "Pending Confirmation"),
    AppointmentStatus.CONFIRMED: (20, "Confirmed"),
    AppointmentStatus.SAMPLE_COLLECTED: (40, "Sample Collected"),
    AppointmentStatus.RECEIVED: (60, "Sample Received at Lab"),
    AppointmentStatus.IN_PROCESS: (80, "Testing in Process"),
    AppointmentStatus.REPORTING: (80, "Reporting"),
    AppointmentStatus.REPORT_UPLOADED: (100, "Report Ready"),
    AppointmentStatus.COMPLETED: (100, "Report Ready"),
    AppointmentStatus.CANCELLED: (0, "Cancelled"),
}


@dataclass(frozen=True)
class Rule:
    """Source statuses an action is valid from, and the status it leads to."""

    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus | None = None  # None keeps the current status


TRANSITIONS: dict[tuple[Action, Role], Rule] = {
    (Action.CONFIRM, Role.STAFF): Rule(
        frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED
    ),
    (Action.CONFIRM_AND_ASSIGN, Role.STAFF): Rule(
        frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED
    ),
    (Action.CANCEL, Role.STAFF): Rule(
        frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        AppointmentStatus.CANCELLED,
    ),
    (Action.ASSIGN, Role.STAFF): Rule(
        frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.CONFIRMED
    ),
    (Action.MARK_SAMPLE_COLLECTED, Role.STAFF): Rule(
        frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.SAMPLE_COLLECTED
    ),
    (Action.MARK_SAMPLE_COLLECTED, Role.PHLEBO): Rule(
        frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.SAMPLE_COLLECTED
    ),
    (Action.RELEASE, Role.PHLEBO): Rule(
        frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.PENDING
    ),
    (Action.MARK_RECEIVED, Role.STAFF): Rule(
        frozenset({AppointmentStatus.SAMPLE_COLLECTED}), AppointmentStatus.RECEIVED
    ),
    (Action.MARK_IN_PROCESS, Role.STAFF): Rule(
        frozenset({AppointmentStatus.RECEIVED}), AppointmentStatus.IN_PROCESS
    ),
    (Action.SAVE_PROGRESS, Role.STAFF): Rule(REPORT_ENTRY_STATUSES),
    (Action.SEND_TO_PATIENT, Role.STAFF): Rule(
        REPORT_ENTRY_STATUSES, AppointmentStatus.COMPLETED
    ),
}


@dataclass(frozen=True)
class ActorContext:
    """Who is applying an action."""

    role: Role
    id: UUID | None = None
    name: str = ""

    @property
    def label(self) -> str:
        """Name used in history entries, e.g. ``"Asha (Staff)"``."""
        title = self.role.value.title()
        return f"{self.name or title} ({title})"


@dataclass(frozen=True)
class Transition:
    """Outcome of applying an action: what to write and what to emit."""

    action: Action
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    updates: dict[str, Any]
    effects: tuple[Effect, ...] = field(default_factory=tuple)
    first_completion: bool = False


def effective_role(role: Role | str) -> Role:
    """Admins act with staff permissions."""
    role = Role(role)
    return Role.STAFF if role is Role.ADMIN else role


def progress(status: AppointmentStatus | str) -> tuple[int, str]:
    """Progress percentage and label shown to the patient."""
    return PROGRESS[AppointmentStatus(status)]


def status_rank(status: AppointmentStatus | str) -> int:
    """Position on the workflow path; -1 for ``Cancelled``."""
    status = AppointmentStatus(status)
    return STATUS_ORDER.index(status) if status in STATUS_ORDER else -1


def _is_own_assignment(appointment: Mapping[str, Any], actor: ActorContext) -> bool:
    phlebo_id = appointment.get("phlebo_id")
    return actor.id is not None and phlebo_id is not None and str(phlebo_id) == str(actor.id)


def allowed_actions(appointment: Mapping[str, Any], actor: ActorContext) -> list[Action]:
    """Actions ``actor`` may apply to ``appointment`` right now."""
    role = effective_role(actor.role)
    current = AppointmentStatus(appointment["status"])
    actions = []
    for (action, rule_role), rule in TRANSITIONS.items():
        if rule_role is not role or current not in rule.sources:
            continue
        if action is Action.ASSIGN and is_assigned(appointment):
            continue
        if role is Role.PHLEBO and not _is_own_assignment(appointment, actor):
            continue
        actions.append(action)
    return actions


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def _tests_label(appointment: Mapping[str, Any]) -> str:
    names: Sequence[str] | str = appointment.get("test_names") or []
    return names if isinstance(names, str) else ", ".join(names)


def apply_transition(
    appointment: Mapping[str, Any],
    action: Action | str,
    actor: ActorContext,
    *,
    phlebo: PhleboBinding | None = None,
    reason: str | None = None,
    report_data: list[dict[str, Any]] | None = None,
    now: datetime | None = None,
) -> Transition:
    """
    Validate ``action`` against the transition table and compute its outcome.

    Args:
        appointment: Current appointment record
        action: Action to apply
        actor: Role, id and display name of the caller
        phlebo: Resolved phlebotomist for confirm / assign actions
        reason: Release or cancellation reason
        report_data: Composed report data for report-entry actions
        now: Clock override

    Returns:
        The transition to persist and the effects to emit

    Raises:
        InvalidTransitionException: Action not allowed for this role and status
        ForbiddenException: A phlebotomist acting on someone else's appointment
        ValidationException: Missing phlebotomist, reason or report values
        ConflictException: Assigning an appointment that is already assigned
    """
    action = Action(action)
    role = effective_role(actor.role)
    current = AppointmentStatus(appointment["status"])
    now = now or datetime.now(UTC)
    check_binding_consistency(appointment)

    rule = TRANSITIONS.get((action, role))
    if rule is None or current not in rule.sources:
        raise InvalidTransitionException(current.value, action.value, Role(actor.role).value)

    target = rule.target or current
    updates: dict[str, Any] = {}
    if target is not current:
        updates["status"] = target.value

    short_id = str(appointment["id"])[:5]
    patient_name = appointment.get("patient_name") or "patient"
    patient = Recipient(role=Role.PATIENT.value, id=appointment["patient_id"])
    effects: list[Effect] = []
    first_completion = False

    if role is Role.PHLEBO and not _is_own_assignment(appointment, actor):
        raise ForbiddenException("This appointment is not assigned to you")

    if action in (Action.CONFIRM_AND_ASSIGN, Action.ASSIGN) and phlebo is None:
        raise ValidationException("Please select a phlebotomist")

    if action is Action.ASSIGN and is_assigned(appointment):
        raise ConflictException(
            f"Appointment is already assigned to {appointment.get('phlebo_name')}"
        )

    if action in (Action.CONFIRM, Action.CONFIRM_AND_ASSIGN, Action.ASSIGN) and phlebo is not None:
        updates.update(bind_fields(phlebo))
        effects.append(
            Notify(
                title="New Appointment Assigned",
                message=f"You have been assigned a new appointment for {patient_name}.",
                target=Recipient(role=Role.PHLEBO.value, id=phlebo.phlebo_id),
                link="/phlebo/dashboard",
            )
        )

    elif action is Action.CANCEL and reason and reason.strip():
        updates["notes"] = _append_note(
            appointment.get("notes"),
            f"Cancelled by {actor.name or 'Staff'} on {now:%d %b %Y}. Reason: {reason.strip()}",
        )

    elif action is Action.RELEASE:
        if not reason or not reason.strip():
            raise ValidationException("Please provide a reason for releasing the appointment")
        updates.update(clear_fields())
        updates["notes"] = _append_note(
            appointment.get("notes"),
            f"Released by {actor.name or 'Phlebo'} on {now:%d %b %Y}. Reason: {reason.strip()}",
        )
        effects.append(
            Notify(
                title="Appointment Released",
                message=(
                    f"Appointment #{short_id} for {patient_name} was released by the phlebo. "
                    f"Reason: {reason.strip()}"
                ),
                target=Broadcast.ALL_STAFF,
                link="/staff/dashboard",
            )
        )

    elif action is Action.MARK_SAMPLE_COLLECTED and role is Role.PHLEBO:
        effects.append(
            RecordHistory(
                user=actor.label,
                action=f"Marked sample collected for appointment #{short_id} for patient {patient_name}.",
            )
        )
        effects.append(
            Notify(
                title="Sample Collected",
                message=f"Sample for appointment #{short_id} has been collected by {actor.name or 'the phlebo'}.",
                target=Broadcast.ALL_STAFF,
                link="/staff/dashboard",
            )
        )

    elif action in (Action.SAVE_PROGRESS, Action.SEND_TO_PATIENT):
        if report_data is None:
            raise ValidationException("Report data is required")
        check_report_matches_tests(report_data, appointment.get("test_ids") or [])
        if action is Action.SEND_TO_PATIENT:
            missing = missing_values(report_data)
            if missing:
                listed = ", ".join(f"{test}/{param}" for test, param in missing)
                raise ValidationException(f"Report values missing for: {listed}")
            first_completion = current not in FINALIZED_STATUSES
        updates["report_data"] = report_data

    if action is Action.SEND_TO_PATIENT:
        if first_completion:
            updates["completed_at"] = now
            effects.append(
                Notify(
                    title="Your Report is Ready!",
                    message=f"Your report for {_tests_label(appointment)} is now available to view.",
                    target=patient,
                    link="/patient/dashboard",
                )
            )
            effects.append(
                RecordHistory(user=actor.label, action=f"Finalized report for appointment #{short_id}.")
            )
    elif role is Role.STAFF and action is not Action.SAVE_PROGRESS:
        assigned = f" and assigned to {phlebo.phlebo_name}" if phlebo is not None else ""
        if action is Action.CANCEL:
            updates["cancelled_at"] = now
        effects.append(
            RecordHistory(
                user=actor.label,
                action=f'Updated appointment #{short_id} for {patient_name} to "{target.value}"{assigned}.',
            )
        )
        if target in PATIENT_UPDATE_STATUSES:
            effects.append(
                Notify(
                    title=f"Appointment Update: {target.value}",
                    message=f"Your test for {_tests_label(appointment)} is now {target.value.lower()}.",
                    target=patient,
                    link="/patient/dashboard",
                )
            )

    return Transition(
        action=action,
        from_status=current,
        to_status=target,
        updates=updates,
        effects=tuple(effects),
        first_completion=first_completion,
    )
