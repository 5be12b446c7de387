"""Contract tests run against every storage backend."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio

from app.core.exceptions import StorageError, StoreConflictError
from app.db.session import create_engine
from app.services import rate_limit
from app.services.email import DisabledEmailSender
from app.services.verification import VerificationCodeManager, VerificationFailure
from app.storage import FileStore, MemoryStore
from app.storage.records import (
    CodePurpose,
    PendingRegistrationRecord,
    SessionRecord,
    StoredHabit,
    VerificationCodeRecord,
)
from app.storage.sql import SQLStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
LOCKOUT = timedelta(minutes=15)


def make_code(email="a@example.com", purpose=CodePurpose.REGISTRATION, code="123456", created_at=NOW, ttl=15):
    return VerificationCodeRecord(
        email=email,
        purpose=purpose,
        code=code,
        created_at=created_at,
        expires_at=created_at + timedelta(minutes=ttl),
    )


def make_habits():
    return [
        StoredHabit(id="b", name_encrypted="enc-b", color="#00f", sort_order=1, completed_dates=["2026-03-01"]),
        StoredHabit(
            id="a",
            name_encrypted="enc-a",
            color="#f00",
            sort_order=0,
            completed_dates=["2026-03-02", "2026-02-28"],
        ),
    ]


@pytest_asyncio.fixture(params=["memory", "file", "sqlite"])
async def any_store(request, tmp_path):
    if request.param == "memory":
        store = MemoryStore()
    elif request.param == "file":
        store = FileStore(tmp_path / "data")
    else:
        store = SQLStore(create_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db"), create_tables=True)

    await store.init()
    yield store
    await store.close()


@pytest.mark.asyncio
class TestUsers:
    async def test_create_and_fetch(self, any_store):
        user = await any_store.create_user("a@example.com", "hash", created_at=NOW)
        assert user.id is not None
        assert user.verified is True

        by_email = await any_store.get_user_by_email("a@example.com")
        by_id = await any_store.get_user_by_id(user.id)
        assert by_email.id == by_id.id == user.id
        assert by_id.created_at == NOW
        assert await any_store.get_user_by_email("b@example.com") is None

    async def test_duplicate_email_conflicts(self, any_store):
        await any_store.create_user("a@example.com", "hash")
        with pytest.raises(StoreConflictError):
            await any_store.create_user("a@example.com", "other")

    async def test_update_password(self, any_store):
        user = await any_store.create_user("a@example.com", "hash")
        assert await any_store.update_password(user.id, "new-hash") is True
        assert (await any_store.get_user_by_id(user.id)).password_hash == "new-hash"
        assert await any_store.update_password(9999, "x") is False

    async def test_delete_user_cascades(self, any_store):
        user = await any_store.create_user("a@example.com", "hash")
        other = await any_store.create_user("b@example.com", "hash")
        await any_store.replace_habits(user.id, make_habits())
        await any_store.replace_habits(other.id, make_habits())
        await any_store.put_session(SessionRecord(id="s1", created_at=NOW, last_activity=NOW, user_id=user.id))

        assert await any_store.delete_user(user.id) is True

        assert await any_store.get_user_by_id(user.id) is None
        assert await any_store.get_habits(user.id) == []
        assert await any_store.get_session("s1") is None
        assert len(await any_store.get_habits(other.id)) == 2
        assert await any_store.delete_user(user.id) is False


@pytest.mark.asyncio
class TestVerificationCodes:
    async def test_put_replaces_same_purpose(self, any_store):
        await any_store.put_verification_code(make_code(code="111111"))
        await any_store.put_verification_code(make_code(code="222222"))
        await any_store.put_verification_code(make_code(purpose=CodePurpose.PASSWORD_RESET, code="333333"))

        registration = await any_store.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
        reset = await any_store.get_verification_code("a@example.com", CodePurpose.PASSWORD_RESET)
        assert registration.code == "222222"
        assert reset.code == "333333"

    async def test_consume_only_once(self, any_store):
        await any_store.put_verification_code(make_code())

        assert await any_store.consume_verification_code("a@example.com", CodePurpose.REGISTRATION, "654321") is False
        assert await any_store.consume_verification_code("a@example.com", CodePurpose.REGISTRATION, "123456") is True
        assert await any_store.consume_verification_code("a@example.com", CodePurpose.REGISTRATION, "123456") is False

        record = await any_store.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
        assert record.used is True

    async def test_concurrent_consume_has_one_winner(self, any_store):
        await any_store.put_verification_code(make_code())

        results = await asyncio.gather(
            *(
                any_store.consume_verification_code("a@example.com", CodePurpose.REGISTRATION, "123456")
                for _ in range(5)
            )
        )
        assert results.count(True) == 1

    async def test_claim_attempt(self, any_store):
        await any_store.put_verification_code(make_code())

        assert await any_store.claim_code_attempt("a@example.com", CodePurpose.REGISTRATION, "123456", 2) == 1
        assert await any_store.claim_code_attempt("a@example.com", CodePurpose.REGISTRATION, "123456", 2) == 2
        assert await any_store.claim_code_attempt("a@example.com", CodePurpose.REGISTRATION, "123456", 2) is None
        assert await any_store.claim_code_attempt("x@example.com", CodePurpose.REGISTRATION, "123456", 2) is None

        record = await any_store.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
        assert record.attempts == 2

    async def test_claim_refuses_used_or_replaced_code(self, any_store):
        await any_store.put_verification_code(make_code())
        assert await any_store.claim_code_attempt("a@example.com", CodePurpose.REGISTRATION, "999999", 5) is None

        await any_store.consume_verification_code("a@example.com", CodePurpose.REGISTRATION, "123456")
        assert await any_store.claim_code_attempt("a@example.com", CodePurpose.REGISTRATION, "123456", 5) is None

    async def test_concurrent_claims_stop_at_the_cap(self, any_store):
        await any_store.put_verification_code(make_code())

        results = await asyncio.gather(
            *(
                any_store.claim_code_attempt("a@example.com", CodePurpose.REGISTRATION, "123456", 5)
                for _ in range(20)
            )
        )

        assert sorted(r for r in results if r is not None) == [1, 2, 3, 4, 5]
        assert results.count(None) == 15
        record = await any_store.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
        assert record.attempts == 5

    async def test_delete_codes(self, any_store):
        await any_store.put_verification_code(make_code())
        await any_store.put_verification_code(make_code(purpose=CodePurpose.PASSWORD_RESET))

        await any_store.delete_verification_code("a@example.com", CodePurpose.REGISTRATION)
        assert await any_store.get_verification_code("a@example.com", CodePurpose.REGISTRATION) is None
        assert await any_store.get_verification_code("a@example.com", CodePurpose.PASSWORD_RESET) is not None

        await any_store.delete_verification_codes("a@example.com")
        assert await any_store.get_verification_code("a@example.com", CodePurpose.PASSWORD_RESET) is None

    async def test_latest_code_issued_at(self, any_store):
        assert await any_store.latest_code_issued_at("a@example.com") is None

        later = NOW + timedelta(minutes=3)
        await any_store.put_verification_code(make_code())
        await any_store.put_verification_code(make_code(purpose=CodePurpose.PASSWORD_RESET, created_at=later))
        await any_store.put_verification_code(make_code(email="b@example.com", created_at=later + timedelta(hours=1)))

        assert await any_store.latest_code_issued_at("a@example.com") == later


@pytest.mark.asyncio
class TestPendingAndAttempts:
    async def test_pending_registration(self, any_store):
        record = PendingRegistrationRecord(
            email="a@example.com",
            password_hash="hash",
            created_at=NOW,
            expires_at=NOW + timedelta(minutes=30),
        )
        await any_store.put_pending_registration(record)
        assert await any_store.get_pending_registration("a@example.com") == record

        await any_store.delete_pending_registration("a@example.com")
        assert await any_store.get_pending_registration("a@example.com") is None

    async def test_login_failures_lock_on_the_last_allowed_one(self, any_store):
        for expected in range(1, 3):
            record = await any_store.record_login_failure("a@example.com", NOW, 3, LOCKOUT)
            assert record.count == expected
            assert record.locked_until is None

        record = await any_store.record_login_failure("a@example.com", NOW, 3, LOCKOUT)
        assert record.count == 3
        assert record.locked_until == NOW + LOCKOUT
        assert await any_store.get_login_attempt("a@example.com") == record

        await any_store.delete_login_attempt("a@example.com")
        assert await any_store.get_login_attempt("a@example.com") is None

    async def test_login_failure_while_locked_changes_nothing(self, any_store):
        for _ in range(3):
            locked = await any_store.record_login_failure("a@example.com", NOW, 3, LOCKOUT)

        later = NOW + timedelta(minutes=5)
        assert await any_store.record_login_failure("a@example.com", later, 3, LOCKOUT) == locked

    async def test_login_failure_restarts_count(self, any_store):
        for _ in range(3):
            await any_store.record_login_failure("a@example.com", NOW, 3, LOCKOUT)
        after_lock = NOW + LOCKOUT + timedelta(seconds=1)
        record = await any_store.record_login_failure("a@example.com", after_lock, 3, LOCKOUT)
        assert (record.count, record.first_attempt_at, record.locked_until) == (1, after_lock, None)

        await any_store.record_login_failure("b@example.com", NOW, 3, LOCKOUT)
        stale = NOW + LOCKOUT + timedelta(seconds=1)
        record = await any_store.record_login_failure("b@example.com", stale, 3, LOCKOUT)
        assert (record.count, record.first_attempt_at) == (1, stale)

    async def test_concurrent_login_failures_all_count(self, any_store):
        await asyncio.gather(
            *(any_store.record_login_failure("b@example.com", NOW, 5, LOCKOUT) for _ in range(10))
        )

        record = await any_store.get_login_attempt("b@example.com")
        assert record.count == 5
        assert record.locked_until == NOW + LOCKOUT


@pytest.mark.asyncio
class TestSessions:
    async def test_session_lifecycle(self, any_store):
        session = SessionRecord(id="s1", created_at=NOW, last_activity=NOW, csrf_token="tok")
        await any_store.put_session(session)
        assert await any_store.get_session("s1") == session

        session.user_id = 7
        session.email = "a@example.com"
        session.last_activity = NOW + timedelta(minutes=1)
        await any_store.put_session(session)
        assert (await any_store.get_session("s1")).user_id == 7

        await any_store.delete_session("s1")
        assert await any_store.get_session("s1") is None

    async def test_delete_user_sessions(self, any_store):
        user = await any_store.create_user("a@example.com", "hash")
        for session_id in ("s1", "s2"):
            await any_store.put_session(
                SessionRecord(id=session_id, created_at=NOW, last_activity=NOW, user_id=user.id)
            )
        await any_store.put_session(SessionRecord(id="anon", created_at=NOW, last_activity=NOW))

        await any_store.delete_user_sessions(user.id)

        assert await any_store.get_session("s1") is None
        assert await any_store.get_session("s2") is None
        assert await any_store.get_session("anon") is not None


@pytest.mark.asyncio
class TestHabits:
    async def test_replace_and_get_sorted(self, any_store):
        user = await any_store.create_user("a@example.com", "hash")
        await any_store.replace_habits(user.id, make_habits())

        habits = await any_store.get_habits(user.id)
        assert [h.id for h in habits] == ["a", "b"]
        assert sorted(habits[0].completed_dates) == ["2026-02-28", "2026-03-02"]
        assert habits[1].name_encrypted == "enc-b"

    async def test_replace_overwrites_everything(self, any_store):
        user = await any_store.create_user("a@example.com", "hash")
        await any_store.replace_habits(user.id, make_habits())
        await any_store.replace_habits(
            user.id,
            [StoredHabit(id="c", name_encrypted="enc-c", color="", sort_order=0)],
        )

        habits = await any_store.get_habits(user.id)
        assert [h.id for h in habits] == ["c"]
        assert habits[0].completed_dates == []

        await any_store.replace_habits(user.id, [])
        assert await any_store.get_habits(user.id) == []


@pytest.mark.asyncio
async def test_purge_expired(any_store):
    later = NOW + timedelta(hours=2)
    await any_store.put_verification_code(make_code(email="old@example.com"))
    await any_store.put_verification_code(make_code(email="new@example.com", created_at=later))
    await any_store.put_pending_registration(
        PendingRegistrationRecord(
            email="old@example.com",
            password_hash="hash",
            created_at=NOW,
            expires_at=NOW + timedelta(minutes=30),
        )
    )
    await any_store.record_login_failure("old@example.com", NOW, 1, LOCKOUT)
    await any_store.put_session(SessionRecord(id="idle", created_at=NOW, last_activity=NOW))
    await any_store.put_session(SessionRecord(id="fresh", created_at=later, last_activity=later))

    removed = await any_store.purge_expired(later, session_timeout_seconds=3600)

    assert removed == 4
    assert await any_store.get_verification_code("old@example.com", CodePurpose.REGISTRATION) is None
    assert await any_store.get_verification_code("new@example.com", CodePurpose.REGISTRATION) is not None
    assert await any_store.get_pending_registration("old@example.com") is None
    assert await any_store.get_login_attempt("old@example.com") is None
    assert await any_store.get_session("idle") is None
    assert await any_store.get_session("fresh") is not None


@pytest.mark.asyncio
class TestFileStore:
    """Persistence specific to the flat-file backend."""

    async def test_state_survives_reload(self, tmp_path):
        store = FileStore(tmp_path)
        await store.init()
        user = await store.create_user("a@example.com", "hash", created_at=NOW)
        await store.replace_habits(user.id, make_habits())
        await store.put_verification_code(make_code())
        await store.put_session(SessionRecord(id="s1", created_at=NOW, last_activity=NOW, user_id=user.id))

        reloaded = FileStore(tmp_path)
        await reloaded.init()

        assert (await reloaded.get_user_by_email("a@example.com")).id == user.id
        assert [h.id for h in await reloaded.get_habits(user.id)] == ["a", "b"]
        code = await reloaded.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
        assert code.code == "123456"
        assert code.expires_at == NOW + timedelta(minutes=15)
        assert (await reloaded.get_session("s1")).user_id == user.id

        second = await reloaded.create_user("b@example.com", "hash")
        assert second.id == user.id + 1

    async def test_delete_user_removes_habit_file(self, tmp_path):
        store = FileStore(tmp_path)
        await store.init()
        user = await store.create_user("a@example.com", "hash")
        await store.replace_habits(user.id, make_habits())
        habit_file = tmp_path / "habits" / f"user_{user.id}.json"
        assert habit_file.exists()

        await store.delete_user(user.id)

        assert not habit_file.exists()

    async def test_failed_write_leaves_store_unchanged(self, tmp_path):
        store = FileStore(tmp_path)
        await store.init()
        user = await store.create_user("a@example.com", "hash")
        await store.put_verification_code(make_code())

        with patch("app.storage.file._write_json_atomic", side_effect=OSError("No space left on device")):
            with pytest.raises(StorageError):
                await store.create_user("b@example.com", "hash")
            with pytest.raises(StorageError):
                await store.update_password(user.id, "new-hash")
            with pytest.raises(StorageError):
                await store.consume_verification_code("a@example.com", CodePurpose.REGISTRATION, "123456")
            with pytest.raises(StorageError):
                await store.record_login_failure("a@example.com", NOW, 5, LOCKOUT)
            with pytest.raises(StorageError):
                await store.put_session(SessionRecord(id="s1", created_at=NOW, last_activity=NOW, user_id=user.id))
            with pytest.raises(StorageError):
                await store.delete_user(user.id)

        reloaded = FileStore(tmp_path)
        await reloaded.init()
        for view in (store, reloaded):
            assert await view.get_user_by_email("b@example.com") is None
            assert (await view.get_user_by_id(user.id)).password_hash == "hash"
            code = await view.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
            assert code.used is False
            assert await view.get_login_attempt("a@example.com") is None
            assert await view.get_session("s1") is None

        second = await store.create_user("b@example.com", "hash")
        assert second.id == user.id + 1


@pytest.mark.asyncio
class TestGuessLimitsUnderConcurrency:
    async def test_concurrent_wrong_codes_are_capped(self, any_store, fake_clock):
        manager = VerificationCodeManager(any_store, DisabledEmailSender())
        await any_store.put_verification_code(make_code())

        results = await asyncio.gather(
            *(manager.verify("a@example.com", "000000", CodePurpose.REGISTRATION) for _ in range(20))
        )

        errors = [result.error for result in results]
        assert errors.count(VerificationFailure.MISMATCH) == 5
        assert errors.count(VerificationFailure.TOO_MANY_ATTEMPTS) == 15
        record = await any_store.get_verification_code("a@example.com", CodePurpose.REGISTRATION)
        assert record.attempts == 5

        locked = await manager.verify("a@example.com", "123456", CodePurpose.REGISTRATION)
        assert locked.error is VerificationFailure.TOO_MANY_ATTEMPTS

    async def test_concurrent_login_failures_lock_account(self, any_store, fake_clock):
        await asyncio.gather(*(rate_limit.record_failure(any_store, "b@example.com") for _ in range(10)))

        locked, remaining = await rate_limit.get_lock_status(any_store, "b@example.com")
        assert locked
        assert remaining == 900
        assert (await any_store.get_login_attempt("b@example.com")).count == 5
