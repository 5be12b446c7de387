"""Tests for the credential store."""

from datetime import timedelta

import pytest

from app.core.exceptions import StoreConflictError
from app.core.security import get_password_hash, verify_password
from app.services import users
from app.storage.records import CodePurpose, SessionRecord, VerificationCodeRecord


def test_normalize_email():
    assert users.normalize_email("  Alice@Example.COM ") == "alice@example.com"


@pytest.mark.asyncio
class TestUsers:
    async def test_create_verified_user(self, store):
        user = await users.create_verified_user(store, "Alice@Example.com", get_password_hash("Passw0rd!"))
        assert user.email == "alice@example.com"
        assert user.verified

        with pytest.raises(StoreConflictError):
            await users.create_verified_user(store, "alice@example.com", "hash")

    async def test_authenticate(self, store, test_user, test_password):
        assert (await users.authenticate(store, "TEST@example.com", test_password)).id == test_user.id
        assert await users.authenticate(store, test_user.email, "wrong-password") is None
        assert await users.authenticate(store, "nobody@example.com", test_password) is None

    async def test_set_password(self, store, test_user):
        await users.set_password(store, test_user, "new-password-1")
        updated = await store.get_user_by_id(test_user.id)
        assert verify_password("new-password-1", updated.password_hash)

    async def test_delete_account_removes_everything(self, store, test_user, fake_clock):
        now = fake_clock.now
        await store.put_session(SessionRecord(id="s1", created_at=now, last_activity=now, user_id=test_user.id))
        await store.put_verification_code(
            VerificationCodeRecord(
                email=test_user.email,
                purpose=CodePurpose.PASSWORD_RESET,
                code="123456",
                created_at=now,
                expires_at=now,
            )
        )
        await store.record_login_failure(test_user.email, now, max_attempts=5, lockout=timedelta(minutes=15))

        await users.delete_account(store, test_user)

        assert await store.get_user_by_id(test_user.id) is None
        assert await store.get_session("s1") is None
        assert await store.latest_code_issued_at(test_user.email) is None
        assert await store.get_login_attempt(test_user.email) is None
