"""Tests for admin endpoints."""

import pytest
from sqlalchemy import select

from labcenter.models import notifications

BASE = "/api/v1/admin"


async def complete_appointment(client, booking_data, patient_headers, staff_headers, phlebo, phlebo_headers):
    booked = await client.post("/api/v1/appointments/", json=booking_data, headers=patient_headers)
    appointment_id = booked.json()["id"]
    url = f"/api/v1/appointments/{appointment_id}/transition"
    await client.post(
        url, json={"action": "confirm_and_assign", "phlebo_id": str(phlebo["id"])}, headers=staff_headers
    )
    await client.post(url, json={"action": "mark_sample_collected"}, headers=phlebo_headers)
    await client.post(url, json={"action": "mark_received"}, headers=staff_headers)
    await client.post(url, json={"action": "mark_in_process"}, headers=staff_headers)
    values = [
        {
            "test_id": "CBC",
            "parameters": [
                {"name": "Hemoglobin", "value": "14"},
                {"name": "WBC Count", "value": "6000"},
            ],
        },
        {"test_id": "FBS", "parameters": [{"name": "Glucose", "value": "88"}]},
    ]
    sent = await client.post(
        f"/api/v1/appointments/{appointment_id}/report/send",
        json={"report_data": values},
        headers=staff_headers,
    )
    assert sent.status_code == 200, sent.text
    return appointment_id


@pytest.mark.asyncio
class TestHistoryLogs:
    """Tests for the audit trail."""

    async def test_history_logs_newest_first(
        self, client, admin_headers, patient_headers, staff_headers, catalog, booking_data
    ):
        booked = await client.post("/api/v1/appointments/", json=booking_data, headers=patient_headers)
        await client.post(
            f"/api/v1/appointments/{booked.json()['id']}/transition",
            json={"action": "confirm"},
            headers=staff_headers,
        )

        response = await client.get(f"{BASE}/history-logs", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert {log["user"] for log in data["logs"]} == {"Ravi Kumar (Patient)", "Asha Rao (Staff)"}

        response = await client.get(f"{BASE}/history-logs", params={"search": "Asha"}, headers=admin_headers)
        assert response.json()["total"] == 1
        assert '"Confirmed"' in response.json()["logs"][0]["action"]

    async def test_history_logs_admin_only(self, client, staff_headers):
        response = await client.get(f"{BASE}/history-logs", headers=staff_headers)
        assert response.status_code == 403


@pytest.mark.asyncio
class TestReviewsAndStats:
    """Tests for reviews and dashboard metrics."""

    async def test_reviews_and_stats(
        self,
        client,
        admin_headers,
        patient_headers,
        staff_headers,
        phlebo,
        phlebo_headers,
        catalog,
        booking_data,
    ):
        appointment_id = await complete_appointment(
            client, booking_data, patient_headers, staff_headers, phlebo, phlebo_headers
        )
        await client.post("/api/v1/appointments/", json=booking_data, headers=patient_headers)
        feedback = await client.post(
            f"/api/v1/appointments/{appointment_id}/feedback",
            json={"rating": 4, "comment": "On time"},
            headers=patient_headers,
        )
        assert feedback.status_code == 201

        response = await client.get(f"{BASE}/reviews", headers=admin_headers)
        assert response.status_code == 200
        reviews = response.json()
        assert reviews["total"] == 1
        assert reviews["average_rating"] == 4.0

        response = await client.get(f"{BASE}/reviews", params={"min_rating": 5}, headers=admin_headers)
        assert response.json()["total"] == 0

        response = await client.get(f"{BASE}/stats", headers=admin_headers)
        assert response.status_code == 200
        stats = response.json()
        assert stats["appointments"] == {"Completed": 1, "Pending": 1}
        assert stats["revenue"] == 470.5
        assert stats["users"]["patient"] == 1
        assert stats["unread_notifications"] >= 2


@pytest.mark.asyncio
class TestBroadcast:
    """Tests for admin announcements."""

    async def test_broadcast_to_staff(self, client, db_session, admin_headers, staff, admin):
        response = await client.post(
            f"{BASE}/notifications",
            json={"title": "Maintenance", "message": "Lab closed Sunday", "target": "all_staff"},
            headers=admin_headers,
        )

        assert response.status_code == 202
        assert response.json() == {"recipients": 2}
        rows = (await db_session.execute(select(notifications))).fetchall()
        assert {row.title for row in rows} == {"Maintenance"}

    async def test_broadcast_validation(self, client, admin_headers):
        response = await client.post(
            f"{BASE}/notifications",
            json={"title": "", "message": "x", "target": "everyone"},
            headers=admin_headers,
        )
        assert response.status_code == 422
