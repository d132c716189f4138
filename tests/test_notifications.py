"""Tests for the notification inbox, fan-out and push tokens."""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import insert, select

from labcenter.lifecycle.effects import Broadcast, Recipient
from labcenter.models import notifications, push_tokens, users
from labcenter.services.notification_service import NotificationService

BASE = "/api/v1/notifications"


async def add_notification(db_session, user, title="Hello", is_read=False):
    notification_id = uuid4()
    await db_session.execute(
        insert(notifications).values(
            id=notification_id,
            recipient_role=user["role"],
            recipient_id=user["id"],
            title=title,
            message=f"{title} message",
            link="/patient/dashboard",
            is_read=is_read,
        )
    )
    await db_session.commit()
    return notification_id


@pytest.mark.asyncio
async def test_emit_fans_out_to_staff_and_admins(db_session, patient, staff, admin, phlebo):
    delivered = await NotificationService.emit(
        db_session, title="New Appointment", message="Ravi booked", target=Broadcast.ALL_STAFF
    )

    assert delivered == 2
    rows = (await db_session.execute(select(notifications))).fetchall()
    assert {(row.recipient_role, row.recipient_id) for row in rows} == {
        ("staff", staff["id"]),
        ("admin", admin["id"]),
    }
    assert all(row.is_read is False for row in rows)


@pytest.mark.asyncio
async def test_emit_to_admins_skips_inactive(db_session, admin, staff):
    await db_session.execute(users.update().where(users.c.id == admin["id"]).values(is_active=False))
    await db_session.commit()

    delivered = await NotificationService.emit(
        db_session, title="Audit", message="Weekly audit", target=Broadcast.ALL_ADMINS
    )
    assert delivered == 0


@pytest.mark.asyncio
async def test_emit_single_recipient(db_session, patient):
    delivered = await NotificationService.emit(
        db_session,
        title="Your Report is Ready!",
        message="Your report is available",
        target=Recipient(role="patient", id=patient["id"]),
        link="/patient/dashboard",
    )

    assert delivered == 1
    row = (await db_session.execute(select(notifications))).fetchone()
    assert row.link == "/patient/dashboard"


@pytest.mark.asyncio
async def test_emit_sends_push_to_active_tokens(db_session, patient):
    await db_session.execute(
        insert(push_tokens),
        [
            {"user_id": patient["id"], "fcm_token": "token-web", "platform": "web", "is_active": True},
            {"user_id": patient["id"], "fcm_token": "token-old", "platform": "android", "is_active": False},
        ],
    )
    await db_session.commit()

    response = MagicMock(success_count=1, failure_count=0)
    with (
        patch("labcenter.services.notification_service.is_firebase_initialized", return_value=True),
        patch(
            "labcenter.services.notification_service.messaging.send_each_for_multicast",
            return_value=response,
        ) as send,
    ):
        await NotificationService.emit(
            db_session,
            title="Appointment Update: Confirmed",
            message="Your test is now confirmed.",
            target=Recipient(role="patient", id=patient["id"]),
        )

    send.assert_called_once()
    message = send.call_args.args[0]
    assert message.tokens == ["token-web"]
    assert message.notification.title == "Appointment Update: Confirmed"


@pytest.mark.asyncio
async def test_push_failure_keeps_inbox_row(db_session, patient):
    await db_session.execute(
        insert(push_tokens).values(user_id=patient["id"], fcm_token="token-web", platform="web")
    )
    await db_session.commit()

    with (
        patch("labcenter.services.notification_service.is_firebase_initialized", return_value=True),
        patch(
            "labcenter.services.notification_service.messaging.send_each_for_multicast",
            side_effect=RuntimeError("FCM unavailable"),
        ),
    ):
        delivered = await NotificationService.emit(
            db_session,
            title="Hello",
            message="World",
            target=Recipient(role="patient", id=patient["id"]),
        )

    assert delivered == 1
    assert len((await db_session.execute(select(notifications))).fetchall()) == 1


@pytest.mark.asyncio
async def test_push_skipped_when_firebase_not_initialized():
    with patch(
        "labcenter.services.notification_service.messaging.send_each_for_multicast"
    ) as send:
        success, failure = await NotificationService.send_push_notification(
            ["token"], title="Hello", body="World"
        )

    send.assert_not_called()
    assert (success, failure) == (0, 0)


@pytest.mark.asyncio
async def test_list_notifications(client, db_session, patient, patient_headers, staff):
    await add_notification(db_session, patient, "First")
    await add_notification(db_session, patient, "Second", is_read=True)
    await add_notification(db_session, staff, "Not mine")

    response = await client.get(BASE, headers=patient_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["unread"] == 1
    assert {item["title"] for item in data["items"]} == {"First", "Second"}

    response = await client.get(BASE, params={"unread_only": "true"}, headers=patient_headers)
    assert [item["title"] for item in response.json()["items"]] == ["First"]


@pytest.mark.asyncio
async def test_mark_read(client, db_session, patient, patient_headers, staff):
    mine = await add_notification(db_session, patient)
    theirs = await add_notification(db_session, staff)

    response = await client.post(f"{BASE}/{mine}/read", headers=patient_headers)
    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert response.json()["read_at"] is not None

    response = await client.post(f"{BASE}/{theirs}/read", headers=patient_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_mark_all_read(client, db_session, patient, patient_headers):
    await add_notification(db_session, patient, "One")
    await add_notification(db_session, patient, "Two")

    response = await client.post(f"{BASE}/read-all", headers=patient_headers)
    assert response.status_code == 200
    assert response.json() == {"updated": 2}

    response = await client.get(BASE, headers=patient_headers)
    assert response.json()["unread"] == 0


@pytest.mark.asyncio
async def test_register_fcm_token(client, db_session, patient, patient_headers):
    payload = {"fcm_token": "device-token-1", "platform": "web"}
    response = await client.post(f"{BASE}/tokens", json=payload, headers=patient_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["fcm_token"] == "device-token-1"
    assert data["is_active"] is True

    # Registering again refreshes the same row
    again = await client.post(f"{BASE}/tokens", json=payload, headers=patient_headers)
    assert again.json()["id"] == data["id"]

    # A new token on the same platform replaces the old one
    await client.post(
        f"{BASE}/tokens", json={"fcm_token": "device-token-2", "platform": "web"}, headers=patient_headers
    )
    rows = (
        await db_session.execute(select(push_tokens).where(push_tokens.c.user_id == patient["id"]))
    ).fetchall()
    assert {row.fcm_token: row.is_active for row in rows} == {
        "device-token-1": False,
        "device-token-2": True,
    }


@pytest.mark.asyncio
async def test_register_fcm_token_invalid_platform(client, patient_headers):
    response = await client.post(
        f"{BASE}/tokens", json={"fcm_token": "t", "platform": "windows"}, headers=patient_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_deactivate_fcm_token(client, patient_headers):
    await client.post(
        f"{BASE}/tokens", json={"fcm_token": "device-token-1", "platform": "ios"}, headers=patient_headers
    )

    response = await client.delete(f"{BASE}/tokens/device-token-1", headers=patient_headers)
    assert response.status_code == 204

    response = await client.delete(f"{BASE}/tokens/unknown-token", headers=patient_headers)
    assert response.status_code == 404
