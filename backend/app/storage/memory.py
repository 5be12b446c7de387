"""In-process store backed by dicts. Used directly by tests and as the base of FileStore."""

import asyncio
import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta

from app.core.exceptions import StoreConflictError
from app.storage.base import Store
from app.storage.records import (
    CodePurpose,
    LoginAttemptRecord,
    PendingRegistrationRecord,
    SessionRecord,
    StoredHabit,
    UserRecord,
    VerificationCodeRecord,
)
from app.utils import clock

# Collection names, also used by FileStore for file names
USERS = "users"
PENDING = "pending_registrations"
CODES = "verification_codes"
ATTEMPTS = "login_attempts"
SESSIONS = "sessions"
HABITS = "habits"


class MemoryStore(Store):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[int, UserRecord] = {}
        self._next_user_id = 1
        self._pending: dict[str, PendingRegistrationRecord] = {}
        self._codes: dict[tuple[str, str], VerificationCodeRecord] = {}
        self._attempts: dict[str, LoginAttemptRecord] = {}
        self._sessions: dict[str, SessionRecord] = {}
        self._habits: dict[int, list[StoredHabit]] = {}

    @asynccontextmanager
    async def _mutation(self) -> AsyncIterator[None]:
        """Serialize one mutation.

        Stored records are replaced, never edited in place, so subclasses can
        snapshot the dicts with shallow copies.
        """
        async with self._lock:
            yield

    async def _changed(self, collection: str, user_id: int | None = None) -> None:
        """Hook called (inside ``_mutation``) after every change."""

    async def ping(self) -> bool:
        return True

    # Users

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        for user in self._users.values():
            if user.email == email:
                return copy.copy(user)
        return None

    async def get_user_by_id(self, user_id: int) -> UserRecord | None:
        user = self._users.get(user_id)
        return copy.copy(user) if user else None

    async def create_user(
        self,
        email: str,
        password_hash: str,
        verified: bool = True,
        created_at: datetime | None = None,
    ) -> UserRecord:
        async with self._mutation():
            if any(u.email == email for u in self._users.values()):
                raise StoreConflictError(email)
            user = UserRecord(
                id=self._next_user_id,
                email=email,
                password_hash=password_hash,
                verified=verified,
                created_at=created_at or clock.utcnow(),
            )
            self._users[user.id] = user
            self._next_user_id += 1
            await self._changed(USERS)
            return copy.copy(user)

    async def update_password(self, user_id: int, password_hash: str) -> bool:
        async with self._mutation():
            user = self._users.get(user_id)
            if user is None:
                return False
            self._users[user_id] = replace(user, password_hash=password_hash)
            await self._changed(USERS)
            return True

    async def delete_user(self, user_id: int) -> bool:
        async with self._mutation():
            if self._users.pop(user_id, None) is None:
                return False
            self._habits.pop(user_id, None)
            for session_id in [s.id for s in self._sessions.values() if s.user_id == user_id]:
                del self._sessions[session_id]
            await self._changed(USERS)
            await self._changed(HABITS, user_id)
            await self._changed(SESSIONS)
            return True

    # Pending registrations

    async def put_pending_registration(self, record: PendingRegistrationRecord) -> None:
        async with self._mutation():
            self._pending[record.email] = copy.copy(record)
            await self._changed(PENDING)

    async def get_pending_registration(self, email: str) -> PendingRegistrationRecord | None:
        record = self._pending.get(email)
        return copy.copy(record) if record else None

    async def delete_pending_registration(self, email: str) -> None:
        async with self._mutation():
            if self._pending.pop(email, None) is not None:
                await self._changed(PENDING)

    # Verification codes

    async def put_verification_code(self, record: VerificationCodeRecord) -> None:
        async with self._mutation():
            self._codes[(record.email, CodePurpose(record.purpose).value)] = copy.copy(record)
            await self._changed(CODES)

    async def get_verification_code(
        self, email: str, purpose: CodePurpose
    ) -> VerificationCodeRecord | None:
        record = self._codes.get((email, CodePurpose(purpose).value))
        return copy.copy(record) if record else None

    async def claim_code_attempt(
        self, email: str, purpose: CodePurpose, code: str, max_attempts: int
    ) -> int | None:
        key = (email, CodePurpose(purpose).value)
        async with self._mutation():
            record = self._codes.get(key)
            if record is None or record.used or record.code != code or record.attempts >= max_attempts:
                return None
            self._codes[key] = replace(record, attempts=record.attempts + 1)
            await self._changed(CODES)
            return record.attempts + 1

    async def consume_verification_code(self, email: str, purpose: CodePurpose, code: str) -> bool:
        key = (email, CodePurpose(purpose).value)
        async with self._mutation():
            record = self._codes.get(key)
            if record is None or record.used or record.code != code:
                return False
            self._codes[key] = replace(record, used=True)
            await self._changed(CODES)
            return True

    async def delete_verification_code(self, email: str, purpose: CodePurpose) -> None:
        async with self._mutation():
            if self._codes.pop((email, CodePurpose(purpose).value), None) is not None:
                await self._changed(CODES)

    async def delete_verification_codes(self, email: str) -> None:
        async with self._mutation():
            keys = [key for key in self._codes if key[0] == email]
            for key in keys:
                del self._codes[key]
            if keys:
                await self._changed(CODES)

    async def latest_code_issued_at(self, email: str) -> datetime | None:
        issued = [r.created_at for (e, _), r in self._codes.items() if e == email]
        return max(issued) if issued else None

    # Login attempts

    async def get_login_attempt(self, email: str) -> LoginAttemptRecord | None:
        record = self._attempts.get(email)
        return copy.copy(record) if record else None

    async def record_login_failure(
        self, email: str, now: datetime, max_attempts: int, lockout: timedelta
    ) -> LoginAttemptRecord:
        async with self._mutation():
            current = self._attempts.get(email)
            if current is None:
                record = LoginAttemptRecord.first_failure(email, now, max_attempts, lockout)
            else:
                record = current.after_failure(now, max_attempts, lockout)
            if record is not current:
                self._attempts[email] = record
                await self._changed(ATTEMPTS)
            return copy.copy(record)

    async def delete_login_attempt(self, email: str) -> None:
        async with self._mutation():
            if self._attempts.pop(email, None) is not None:
                await self._changed(ATTEMPTS)

    # Sessions

    async def get_session(self, session_id: str) -> SessionRecord | None:
        record = self._sessions.get(session_id)
        return copy.copy(record) if record else None

    async def put_session(self, record: SessionRecord) -> None:
        async with self._mutation():
            self._sessions[record.id] = copy.copy(record)
            await self._changed(SESSIONS)

    async def delete_session(self, session_id: str) -> None:
        async with self._mutation():
            if self._sessions.pop(session_id, None) is not None:
                await self._changed(SESSIONS)

    async def delete_user_sessions(self, user_id: int) -> None:
        async with self._mutation():
            ids = [s.id for s in self._sessions.values() if s.user_id == user_id]
            for session_id in ids:
                del self._sessions[session_id]
            if ids:
                await self._changed(SESSIONS)

    # Habits

    async def get_habits(self, user_id: int) -> list[StoredHabit]:
        habits = self._habits.get(user_id, [])
        return sorted(copy.deepcopy(habits), key=lambda h: h.sort_order)

    async def replace_habits(self, user_id: int, habits: list[StoredHabit]) -> None:
        async with self._mutation():
            self._habits[user_id] = copy.deepcopy(habits)
            await self._changed(HABITS, user_id)

    # Maintenance

    async def purge_expired(self, now: datetime, session_timeout_seconds: int) -> int:
        idle_cutoff = now - timedelta(seconds=session_timeout_seconds)
        async with self._mutation():
            expired_codes = [k for k, r in self._codes.items() if r.is_expired(now)]
            expired_pending = [k for k, r in self._pending.items() if r.is_expired(now)]
            lapsed_locks = [
                k for k, r in self._attempts.items()
                if r.locked_until is not None and r.locked_until <= now
            ]
            idle_sessions = [k for k, r in self._sessions.items() if r.last_activity < idle_cutoff]

            for key in expired_codes:
                del self._codes[key]
            for key in expired_pending:
                del self._pending[key]
            for key in lapsed_locks:
                del self._attempts[key]
            for key in idle_sessions:
                del self._sessions[key]

            for collection, removed in (
                (CODES, expired_codes),
                (PENDING, expired_pending),
                (ATTEMPTS, lapsed_locks),
                (SESSIONS, idle_sessions),
            ):
                if removed:
                    await self._changed(collection)

            return len(expired_codes) + len(expired_pending) + len(lapsed_locks) + len(idle_sessions)
