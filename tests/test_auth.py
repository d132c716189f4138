"""Tests for Firebase sign-in and token endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from labcenter.core.security import create_refresh_token, decode_access_token
from labcenter.models import notifications, users

BASE = "/api/v1/auth"
VERIFY = "labcenter.services.auth_service.verify_firebase_token"


@pytest.mark.asyncio
class TestFirebaseLogin:
    """Tests for exchanging a Firebase ID token."""

    async def test_first_login_registers_patient(self, client, db_session, staff, admin):
        token_data = {"uid": "firebase-new-user", "email": "new.patient@example.com"}
        with patch(VERIFY, new=AsyncMock(return_value=token_data)):
            response = await client.post(
                f"{BASE}/firebase/verify",
                json={"id_token": "valid-id-token", "full_name": "Anita Desai"},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["role"] == "patient"
        assert data["user"]["full_name"] == "Anita Desai"

        claims = decode_access_token(data["access_token"])
        assert claims["sub"] == data["user"]["id"]
        assert claims["role"] == "patient"

        rows = (
            await db_session.execute(
                select(notifications).where(notifications.c.title == "New Patient Registered")
            )
        ).fetchall()
        assert {row.recipient_id for row in rows} == {staff["id"], admin["id"]}

    async def test_returning_user_keeps_role(self, client, db_session, phlebo):
        token_data = {"uid": phlebo["firebase_uid"], "email": phlebo["email"]}
        with patch(VERIFY, new=AsyncMock(return_value=token_data)):
            response = await client.post(f"{BASE}/firebase/verify", json={"id_token": "valid-id-token"})

        assert response.status_code == 200
        assert response.json()["user"]["role"] == "phlebo"

        last_login = (
            await db_session.execute(select(users.c.last_login_at).where(users.c.id == phlebo["id"]))
        ).scalar()
        assert last_login is not None

    async def test_deactivated_user_is_refused(self, client, db_session, patient):
        await db_session.execute(
            users.update().where(users.c.id == patient["id"]).values(is_active=False)
        )
        await db_session.commit()

        token_data = {"uid": patient["firebase_uid"], "email": patient["email"]}
        with patch(VERIFY, new=AsyncMock(return_value=token_data)):
            response = await client.post(f"{BASE}/firebase/verify", json={"id_token": "valid-id-token"})

        assert response.status_code == 403

    async def test_invalid_firebase_token(self, client):
        with patch(VERIFY, new=AsyncMock(side_effect=ValueError("Invalid Firebase ID token"))):
            response = await client.post(f"{BASE}/firebase/verify", json={"id_token": "forged"})

        assert response.status_code == 401
        assert response.json()["error"] == "UnauthorizedException"


@pytest.mark.asyncio
class TestTokens:
    """Tests for refresh and logout."""

    async def test_refresh_issues_new_pair(self, client, patient):
        refresh = create_refresh_token({"sub": str(patient["id"]), "role": "patient"})

        response = await client.post(f"{BASE}/refresh", json={"refresh_token": refresh})

        assert response.status_code == 200
        claims = decode_access_token(response.json()["access_token"])
        assert claims["sub"] == str(patient["id"])
        assert claims["role"] == "patient"

    async def test_access_token_cannot_refresh(self, client, patient_headers):
        access = patient_headers["Authorization"].removeprefix("Bearer ")
        response = await client.post(f"{BASE}/refresh", json={"refresh_token": access})
        assert response.status_code == 401

    async def test_revoked_token_cannot_refresh(self, client, mock_redis, patient):
        refresh = create_refresh_token({"sub": str(patient["id"]), "role": "patient"})

        response = await client.post(f"{BASE}/logout", json={"refresh_token": refresh})
        assert response.status_code == 204
        blacklist_key = f"labcenter:blacklist:{refresh}"
        assert mock_redis.setex.call_args.args[0] == blacklist_key

        mock_redis.exists.side_effect = lambda key: int(key == blacklist_key)
        response = await client.post(f"{BASE}/refresh", json={"refresh_token": refresh})
        assert response.status_code == 401

    async def test_invalid_bearer_token(self, client):
        response = await client.get("/api/v1/users/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
