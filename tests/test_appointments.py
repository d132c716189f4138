"""Tests for appointment booking, workflow and reporting endpoints."""

from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labcenter.core.exceptions import StaleVersionException, ValidationException
from labcenter.models import appointments, history_logs, notifications
from labcenter.schemas.appointments import AppointmentCreate, TransitionRequest
from labcenter.services.appointment_service import AppointmentService


BASE = "/api/v1/appointments"


async def count_notifications(db: AsyncSession, recipient_id: Any, title: str) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(notifications)
        .where(notifications.c.recipient_id == recipient_id, notifications.c.title == title)
    )
    return result.scalar() or 0


async def book(client: AsyncClient, headers: dict[str, str], data: dict[str, Any]) -> dict[str, Any]:
    response = await client.post(f"{BASE}/", json=data, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def act(
    client: AsyncClient, appointment_id: str, headers: dict[str, str], action: str, **extra: Any
):
    return await client.post(
        f"{BASE}/{appointment_id}/transition", json={"action": action, **extra}, headers=headers
    )


async def advance_to_in_process(
    client: AsyncClient,
    appointment_id: str,
    staff_headers: dict[str, str],
    phlebo: dict[str, Any],
    phlebo_headers: dict[str, str],
) -> dict[str, Any]:
    """Drive an appointment from Pending to In Process."""
    response = await act(
        client, appointment_id, staff_headers, "confirm_and_assign", phlebo_id=str(phlebo["id"])
    )
    assert response.status_code == 200, response.text
    response = await act(client, appointment_id, phlebo_headers, "mark_sample_collected")
    assert response.status_code == 200, response.text
    for action in ("mark_received", "mark_in_process"):
        response = await act(client, appointment_id, staff_headers, action)
        assert response.status_code == 200, response.text
    return response.json()


FULL_VALUES = [
    {
        "test_id": "CBC",
        "parameters": [
            {"name": "Hemoglobin", "value": "12.1"},
            {"name": "WBC Count", "value": "7200"},
        ],
    },
    {"test_id": "FBS", "parameters": [{"name": "Glucose", "value": "92"}]},
]


@pytest.mark.asyncio
class TestBooking:
    """Tests for booking appointments."""

    async def test_patient_books_appointment(
        self, client, db_session, patient, patient_headers, staff, admin, catalog, booking_data
    ):
        data = await book(client, patient_headers, booking_data)

        assert data["status"] == "Pending"
        assert data["patient_id"] == str(patient["id"])
        assert data["patient_name"] == "Ravi Kumar"
        assert data["test_names"] == ["Complete Blood Count", "Fasting Blood Sugar"]
        assert data["total_cost"] == 470.5
        assert data["version"] == 1
        assert data["progress"] == 0
        assert data["phlebo_id"] is None
        assert data["allowed_actions"] == []

        # Staff and admins are told about the booking
        assert await count_notifications(db_session, staff["id"], "New Appointment") == 1
        assert await count_notifications(db_session, admin["id"], "New Appointment") == 1

        logs = (await db_session.execute(select(history_logs))).fetchall()
        assert len(logs) == 1
        assert logs[0].user == "Ravi Kumar (Patient)"
        assert logs[0].action.startswith(f"Booked new appointment #{data['id'][:5]} for Ravi Kumar")

    async def test_legacy_comma_test_ids(self, client, patient_headers, catalog, booking_data):
        booking_data["test_ids"] = "CBC, XRAY"
        data = await book(client, patient_headers, booking_data)
        assert data["test_ids"] == ["CBC", "XRAY"]
        assert data["total_cost"] == 850.0

    async def test_staff_books_for_patient(
        self, client, patient, staff_headers, catalog, booking_data
    ):
        booking_data["patient_id"] = str(patient["id"])
        data = await book(client, staff_headers, booking_data)
        assert data["patient_id"] == str(patient["id"])
        assert data["patient_name"] == "Ravi Kumar"

    async def test_staff_booking_requires_patient(self, client, staff_headers, staff, catalog, booking_data):
        response = await client.post(f"{BASE}/", json=booking_data, headers=staff_headers)
        assert response.status_code == 422

        booking_data["patient_id"] = str(staff["id"])
        response = await client.post(f"{BASE}/", json=booking_data, headers=staff_headers)
        assert response.status_code == 404

    async def test_patient_cannot_book_for_someone_else(
        self, client, patient_headers, other_patient, catalog, booking_data
    ):
        booking_data["patient_id"] = str(other_patient["id"])
        response = await client.post(f"{BASE}/", json=booking_data, headers=patient_headers)
        assert response.status_code == 403

    async def test_phlebo_cannot_book(self, client, phlebo_headers, catalog, booking_data):
        response = await client.post(f"{BASE}/", json=booking_data, headers=phlebo_headers)
        assert response.status_code == 403

    @pytest.mark.parametrize(
        "overrides",
        [
            {"date": (date.today() - timedelta(days=1)).isoformat()},
            {"time_slot": "07:00"},
            {"time_slot": "9am"},
            {"test_ids": ["CBC", "MRI"]},
            {"test_ids": []},
            {"test_ids": 123},
            {"test_ids": {"CBC": True}},
            {"contact": "call me maybe"},
        ],
    )
    async def test_invalid_bookings_rejected(
        self, client, patient_headers, catalog, booking_data, overrides
    ):
        response = await client.post(
            f"{BASE}/", json={**booking_data, **overrides}, headers=patient_headers
        )
        assert response.status_code == 422

    async def test_booking_requires_auth(self, client, catalog, booking_data):
        response = await client.post(f"{BASE}/", json=booking_data)
        assert response.status_code in (401, 403)

    async def test_slot_earlier_today_is_rejected(self, db_session, patient, catalog, booking_data):
        """A slot that has already passed today cannot be booked."""
        service = AppointmentService(db_session)
        data = AppointmentCreate(**booking_data)
        midday = datetime.combine(data.date, time(12, 0), tzinfo=UTC)

        with pytest.raises(ValidationException):
            await service.book_appointment(patient, data, now=midday)

        later = AppointmentCreate(**{**booking_data, "time_slot": "15:00"})
        booked = await service.book_appointment(patient, later, now=midday)
        assert booked.status == "Pending"


@pytest.mark.asyncio
class TestWorkflow:
    """Tests for moving appointments through the lifecycle."""

    async def test_full_lifecycle(
        self,
        client,
        db_session,
        patient,
        patient_headers,
        staff,
        staff_headers,
        phlebo,
        phlebo_headers,
        catalog,
        booking_data,
    ):
        appointment = await book(client, patient_headers, booking_data)
        appointment_id = appointment["id"]

        response = await act(
            client, appointment_id, staff_headers, "confirm_and_assign", phlebo_id=str(phlebo["id"])
        )
        assert response.status_code == 200
        confirmed = response.json()
        assert confirmed["status"] == "Confirmed"
        assert confirmed["phlebo_id"] == str(phlebo["id"])
        assert confirmed["phlebo_name"] == "Sunil Verma"
        assert confirmed["version"] == 2
        assert await count_notifications(db_session, phlebo["id"], "New Appointment Assigned") == 1
        assert await count_notifications(db_session, patient["id"], "Appointment Update: Confirmed") == 1

        assigned = await client.get(f"{BASE}/assigned", headers=phlebo_headers)
        assert assigned.status_code == 200
        assert [item["id"] for item in assigned.json()["items"]] == [appointment_id]
        assert set(assigned.json()["items"][0]["allowed_actions"]) == {"mark_sample_collected", "release"}

        response = await act(client, appointment_id, phlebo_headers, "mark_sample_collected")
        assert response.status_code == 200
        assert response.json()["status"] == "Sample Collected"
        assert await count_notifications(db_session, staff["id"], "Sample Collected") == 1

        history = await client.get(f"{BASE}/assigned", params={"history": "true"}, headers=phlebo_headers)
        assert history.json()["total"] == 1

        for action, status in (("mark_received", "Received"), ("mark_in_process", "In Process")):
            response = await act(client, appointment_id, staff_headers, action)
            assert response.status_code == 200
            assert response.json()["status"] == status

        draft = await client.get(f"{BASE}/{appointment_id}/report", headers=staff_headers)
        assert draft.status_code == 200
        blocks = draft.json()["report_data"]
        assert [block["test_id"] for block in blocks] == ["CBC", "FBS"]
        assert [p["name"] for p in blocks[0]["parameters"]] == ["Hemoglobin", "WBC Count"]
        assert all(p["value"] == "" for block in blocks for p in block["parameters"])

        partial = [{"test_id": "CBC", "parameters": [{"name": "Hemoglobin", "value": "12.1"}]}]
        response = await client.put(
            f"{BASE}/{appointment_id}/report", json={"report_data": partial}, headers=staff_headers
        )
        assert response.status_code == 200
        saved = response.json()
        assert saved["status"] == "In Process"
        assert saved["report_data"][0]["parameters"][0]["value"] == "12.1"

        response = await client.post(
            f"{BASE}/{appointment_id}/report/send", json={"report_data": []}, headers=staff_headers
        )
        assert response.status_code == 422
        assert "CBC/WBC Count" in response.json()["message"]

        response = await client.post(
            f"{BASE}/{appointment_id}/report/send", json={"report_data": FULL_VALUES}, headers=staff_headers
        )
        assert response.status_code == 200
        completed = response.json()
        assert completed["status"] == "Completed"
        assert completed["progress"] == 100
        assert completed["completed_at"] is not None
        assert await count_notifications(db_session, patient["id"], "Your Report is Ready!") == 1

        result = await client.get(f"{BASE}/{appointment_id}/result", headers=patient_headers)
        assert result.status_code == 200
        hemoglobin = result.json()["report_data"][0]["parameters"][0]
        assert hemoglobin["out_of_range"] is True
        assert hemoglobin["flag"] == "L"

    async def test_resend_report_does_not_notify_again(
        self,
        client,
        db_session,
        patient,
        patient_headers,
        staff_headers,
        phlebo,
        phlebo_headers,
        catalog,
        booking_data,
    ):
        appointment = await book(client, patient_headers, booking_data)
        await advance_to_in_process(client, appointment["id"], staff_headers, phlebo, phlebo_headers)

        send_url = f"{BASE}/{appointment['id']}/report/send"
        first = await client.post(send_url, json={"report_data": FULL_VALUES}, headers=staff_headers)
        assert first.status_code == 200

        corrected = [
            {"test_id": "FBS", "parameters": [{"name": "Glucose", "value": "104"}]},
        ]
        second = await client.post(send_url, json={"report_data": corrected}, headers=staff_headers)
        assert second.status_code == 200
        assert second.json()["status"] == "Completed"
        assert second.json()["report_data"][1]["parameters"][0]["value"] == "104"
        assert second.json()["completed_at"] == first.json()["completed_at"]
        assert await count_notifications(db_session, patient["id"], "Your Report is Ready!") == 1

    async def test_test_without_format_gets_empty_block(
        self, client, patient_headers, staff_headers, phlebo, phlebo_headers, catalog, booking_data
    ):
        booking_data["test_ids"] = ["XRAY", "FBS"]
        appointment = await book(client, patient_headers, booking_data)
        await advance_to_in_process(client, appointment["id"], staff_headers, phlebo, phlebo_headers)

        draft = await client.get(f"{BASE}/{appointment['id']}/report", headers=staff_headers)
        xray = draft.json()["report_data"][0]
        assert xray == {"test_id": "XRAY", "test_name": "Chest X-Ray", "parameters": []}

    async def test_report_draft_requires_report_entry(
        self, client, patient_headers, staff_headers, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)
        response = await client.get(f"{BASE}/{appointment['id']}/report", headers=staff_headers)
        assert response.status_code == 409

    async def test_release_returns_to_pending(
        self,
        client,
        db_session,
        patient_headers,
        staff,
        staff_headers,
        phlebo,
        phlebo_headers,
        catalog,
        booking_data,
    ):
        appointment = await book(client, patient_headers, booking_data)
        await act(client, appointment["id"], staff_headers, "confirm_and_assign", phlebo_id=str(phlebo["id"]))

        response = await act(client, appointment["id"], phlebo_headers, "release")
        assert response.status_code == 422

        response = await act(
            client, appointment["id"], phlebo_headers, "release", reason="Vehicle breakdown"
        )
        assert response.status_code == 200
        released = response.json()
        assert released["status"] == "Pending"
        assert released["phlebo_id"] is None
        assert released["phlebo_name"] is None
        assert "Vehicle breakdown" in released["notes"]
        assert await count_notifications(db_session, staff["id"], "Appointment Released") == 1

        assigned = await client.get(f"{BASE}/assigned", headers=phlebo_headers)
        assert assigned.json()["total"] == 0

    async def test_assign_after_plain_confirm(
        self, client, patient_headers, staff_headers, phlebo, other_phlebo, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)
        response = await act(client, appointment["id"], staff_headers, "confirm")
        assert response.json()["phlebo_id"] is None
        assert "assign" in response.json()["allowed_actions"]

        response = await act(client, appointment["id"], staff_headers, "assign", phlebo_id=str(phlebo["id"]))
        assert response.status_code == 200
        assert response.json()["phlebo_name"] == "Sunil Verma"

        response = await act(
            client, appointment["id"], staff_headers, "assign", phlebo_id=str(other_phlebo["id"])
        )
        assert response.status_code == 409

    async def test_unknown_phlebo_rejected(self, client, patient_headers, staff_headers, catalog, booking_data):
        appointment = await book(client, patient_headers, booking_data)
        response = await act(
            client, appointment["id"], staff_headers, "confirm_and_assign", phlebo_id=str(uuid4())
        )
        assert response.status_code == 422

    async def test_cancel_with_reason(self, client, patient_headers, staff_headers, catalog, booking_data):
        appointment = await book(client, patient_headers, booking_data)
        response = await act(client, appointment["id"], staff_headers, "cancel", reason="Patient travelling")

        assert response.status_code == 200
        cancelled = response.json()
        assert cancelled["status"] == "Cancelled"
        assert cancelled["cancelled_at"] is not None
        assert "Patient travelling" in cancelled["notes"]
        assert cancelled["allowed_actions"] == []

    async def test_invalid_transition_returns_details(
        self, client, patient_headers, staff_headers, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)
        response = await act(client, appointment["id"], staff_headers, "mark_received")

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "InvalidTransitionException"
        assert body["details"] == {"status": "Pending", "action": "mark_received", "actor": "staff"}

    async def test_stale_version_conflict(
        self, client, patient_headers, staff_headers, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)

        response = await act(client, appointment["id"], staff_headers, "confirm", expected_version=1)
        assert response.status_code == 200
        assert response.json()["version"] == 2

        response = await act(client, appointment["id"], staff_headers, "cancel", expected_version=1)
        assert response.status_code == 409
        assert response.json()["error"] == "StaleVersionException"

    async def test_concurrent_write_loses_to_version_check(
        self, client, db_session, patient, patient_headers, staff, catalog, booking_data
    ):
        """A writer whose read went stale is rejected and changes nothing."""
        appointment = await book(client, patient_headers, booking_data)
        appointment_id = UUID(appointment["id"])
        service = AppointmentService(db_session)
        read = service._fetch

        async def read_then_lose_race(target_id):
            record = await read(target_id)
            await db_session.execute(
                update(appointments)
                .where(appointments.c.id == target_id)
                .values(version=appointments.c.version + 1)
            )
            await db_session.commit()
            return record

        service._fetch = read_then_lose_race
        history_before = (await db_session.execute(select(func.count()).select_from(history_logs))).scalar()

        with pytest.raises(StaleVersionException) as excinfo:
            await service.transition(appointment_id, staff, TransitionRequest(action="confirm"))

        assert excinfo.value.status_code == 409
        assert excinfo.value.expected == 1
        assert excinfo.value.actual == 2
        row = (
            await db_session.execute(select(appointments).where(appointments.c.id == appointment_id))
        ).fetchone()
        assert row.status == "Pending"
        assert row.version == 2
        assert await count_notifications(db_session, patient["id"], "Appointment Update: Confirmed") == 0
        history_after = (await db_session.execute(select(func.count()).select_from(history_logs))).scalar()
        assert history_after == history_before

    async def test_patient_cannot_transition(self, client, patient_headers, catalog, booking_data):
        appointment = await book(client, patient_headers, booking_data)
        response = await act(client, appointment["id"], patient_headers, "confirm")
        assert response.status_code == 403

    async def test_other_phlebo_cannot_collect(
        self, client, patient_headers, staff_headers, phlebo, other_phlebo, headers_for, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)
        await act(client, appointment["id"], staff_headers, "confirm_and_assign", phlebo_id=str(phlebo["id"]))

        response = await act(client, appointment["id"], headers_for(other_phlebo), "mark_sample_collected")
        assert response.status_code == 403

    async def test_transition_missing_appointment(self, client, staff_headers):
        response = await act(client, str(uuid4()), staff_headers, "confirm")
        assert response.status_code == 404


@pytest.mark.asyncio
class TestReadsAndAccess:
    """Tests for listings and per-role access."""

    async def test_patient_lists_own_appointments(
        self, client, patient_headers, other_patient, headers_for, catalog, booking_data
    ):
        await book(client, patient_headers, booking_data)
        await book(client, headers_for(other_patient), booking_data)

        response = await client.get(f"{BASE}/me", headers=patient_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["patient_name"] == "Ravi Kumar"

    async def test_patient_cannot_view_other_appointment(
        self, client, patient_headers, other_patient, headers_for, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)
        response = await client.get(f"{BASE}/{appointment['id']}", headers=headers_for(other_patient))
        assert response.status_code == 403

    async def test_staff_queue_tabs(self, client, patient_headers, staff_headers, catalog, booking_data):
        first = await book(client, patient_headers, booking_data)
        await book(client, patient_headers, booking_data)
        await act(client, first["id"], staff_headers, "confirm")

        pending = await client.get(f"{BASE}/queue", params={"queue": "pending"}, headers=staff_headers)
        in_progress = await client.get(f"{BASE}/queue", params={"queue": "in_progress"}, headers=staff_headers)
        everything = await client.get(f"{BASE}/queue", headers=staff_headers)
        by_name = await client.get(f"{BASE}/queue", params={"search": "ravi"}, headers=staff_headers)

        assert pending.json()["total"] == 1
        assert in_progress.json()["items"][0]["id"] == first["id"]
        assert everything.json()["total"] == 2
        assert by_name.json()["total"] == 2

    async def test_queue_forbidden_for_patient(self, client, patient_headers):
        response = await client.get(f"{BASE}/queue", headers=patient_headers)
        assert response.status_code == 403

    async def test_result_not_ready(self, client, patient_headers, catalog, booking_data):
        appointment = await book(client, patient_headers, booking_data)
        response = await client.get(f"{BASE}/{appointment['id']}/result", headers=patient_headers)
        assert response.status_code == 409

    async def test_admin_deletes_appointment(
        self, client, patient_headers, admin_headers, staff_headers, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)

        response = await client.delete(f"{BASE}/{appointment['id']}", headers=staff_headers)
        assert response.status_code == 403

        response = await client.delete(f"{BASE}/{appointment['id']}", headers=admin_headers)
        assert response.status_code == 204

        response = await client.get(f"{BASE}/{appointment['id']}", headers=admin_headers)
        assert response.status_code == 404


@pytest.mark.asyncio
class TestFeedback:
    """Tests for patient feedback."""

    async def test_feedback_once_after_completion(
        self, client, patient_headers, staff_headers, phlebo, phlebo_headers, catalog, booking_data
    ):
        appointment = await book(client, patient_headers, booking_data)
        url = f"{BASE}/{appointment['id']}/feedback"

        response = await client.post(url, json={"rating": 5}, headers=patient_headers)
        assert response.status_code == 409

        await advance_to_in_process(client, appointment["id"], staff_headers, phlebo, phlebo_headers)
        await client.post(
            f"{BASE}/{appointment['id']}/report/send", json={"report_data": FULL_VALUES}, headers=staff_headers
        )

        response = await client.post(url, json={"rating": 4, "comment": "Punctual"}, headers=patient_headers)
        assert response.status_code == 201
        review = response.json()
        assert review["rating"] == 4
        assert review["test_name"] == "Complete Blood Count, Fasting Blood Sugar"

        detail = await client.get(f"{BASE}/{appointment['id']}", headers=patient_headers)
        assert detail.json()["feedback_submitted"] is True

        response = await client.post(url, json={"rating": 1}, headers=patient_headers)
        assert response.status_code == 409

    async def test_rating_bounds(self, client, patient_headers, catalog, booking_data):
        appointment = await book(client, patient_headers, booking_data)
        response = await client.post(
            f"{BASE}/{appointment['id']}/feedback", json={"rating": 6}, headers=patient_headers
        )
        assert response.status_code == 422
