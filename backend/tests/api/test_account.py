"""Tests for account management endpoints."""

import pytest

from app.core.security import verify_password

SAMPLE = {
    "habits": [{"id": "h1", "name": "Meditate", "color": "#abc"}],
    "habitData": {"h1": {"2026-03-01": True}},
}


@pytest.mark.asyncio
class TestChangePassword:
    async def test_change_password(self, authenticated_client, store, test_user, test_password):
        response = await authenticated_client.post(
            "/api/account/change-password",
            json={"current_password": test_password, "new_password": "another-password"},
        )

        assert response.status_code == 200
        user = await store.get_user_by_id(test_user.id)
        assert verify_password("another-password", user.password_hash)

    async def test_wrong_current_password(self, authenticated_client, test_password):
        response = await authenticated_client.post(
            "/api/account/change-password",
            json={"current_password": "not-my-password", "new_password": "another-password"},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Current password is incorrect"

    async def test_weak_new_password(self, authenticated_client, test_password):
        response = await authenticated_client.post(
            "/api/account/change-password",
            json={"current_password": test_password, "new_password": "x" * 129},
        )
        assert response.status_code == 400

    async def test_requires_login(self, client, csrf_token, test_password):
        response = await client.post(
            "/api/account/change-password",
            json={"current_password": test_password, "new_password": "another-password"},
            headers={"X-CSRF-Token": csrf_token},
        )
        assert response.status_code == 401

    async def test_requires_csrf(self, authenticated_client, test_password):
        del authenticated_client.headers["X-CSRF-Token"]
        response = await authenticated_client.post(
            "/api/account/change-password",
            json={"current_password": test_password, "new_password": "another-password"},
        )
        assert response.status_code == 403


@pytest.mark.asyncio
class TestDeleteAccount:
    async def test_delete_account(self, authenticated_client, store, test_user, test_password):
        await authenticated_client.post("/api/data/save", json=SAMPLE)

        response = await authenticated_client.post("/api/account/delete-account", json={"password": test_password})

        assert response.status_code == 200
        assert await store.get_user_by_id(test_user.id) is None
        assert await store.get_habits(test_user.id) == []
        assert (await authenticated_client.get("/api/data/load")).status_code == 401
        check = await authenticated_client.get("/api/auth/check")
        assert check.json()["loggedIn"] is False

    async def test_wrong_password_keeps_account(self, authenticated_client, store, test_user):
        response = await authenticated_client.post("/api/account/delete-account", json={"password": "nope-nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "Password is incorrect"
        assert await store.get_user_by_id(test_user.id) is not None

    async def test_email_can_register_again(self, authenticated_client, test_user, test_password):
        await authenticated_client.post("/api/account/delete-account", json={"password": test_password})
        csrf_token = (await authenticated_client.get("/api/auth/csrf")).json()["csrf_token"]

        response = await authenticated_client.post(
            "/api/auth/register",
            json={"email": test_user.email, "password": "fresh-start-1"},
            headers={"X-CSRF-Token": csrf_token},
        )
        assert response.status_code == 200
