"""
Storage interface.

The credential, verification, session and habit services are written once
against ``Store``. Backends:

- ``MemoryStore``: process-local dicts, used by tests
- ``FileStore``: flat-file JSON under DATA_DIR
- ``SQLStore``: SQLAlchemy async (SQLite or PostgreSQL)

Expired rows are never swept in the background; services check deadlines when
a row is touched. ``purge_expired`` reclaims space for an optional external
cleanup job.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from app.storage.records import (
    CodePurpose,
    LoginAttemptRecord,
    PendingRegistrationRecord,
    SessionRecord,
    StoredHabit,
    UserRecord,
    VerificationCodeRecord,
)


class Store(ABC):
    async def init(self) -> None:
        """Prepare the backend (create tables, load files)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""

    # Users

    @abstractmethod
    async def get_user_by_email(self, email: str) -> UserRecord | None: ...

    @abstractmethod
    async def get_user_by_id(self, user_id: int) -> UserRecord | None: ...

    @abstractmethod
    async def create_user(
        self,
        email: str,
        password_hash: str,
        verified: bool = True,
        created_at: datetime | None = None,
    ) -> UserRecord:
        """Insert a user. Raises StoreConflictError if the email exists."""

    @abstractmethod
    async def update_password(self, user_id: int, password_hash: str) -> bool: ...

    @abstractmethod
    async def delete_user(self, user_id: int) -> bool:
        """Delete a user together with their habits, entries and sessions."""

    # Pending registrations

    @abstractmethod
    async def put_pending_registration(self, record: PendingRegistrationRecord) -> None: ...

    @abstractmethod
    async def get_pending_registration(self, email: str) -> PendingRegistrationRecord | None: ...

    @abstractmethod
    async def delete_pending_registration(self, email: str) -> None: ...

    # Verification codes

    @abstractmethod
    async def put_verification_code(self, record: VerificationCodeRecord) -> None:
        """Store a code, replacing any code with the same (email, purpose)."""

    @abstractmethod
    async def get_verification_code(
        self, email: str, purpose: CodePurpose
    ) -> VerificationCodeRecord | None: ...

    @abstractmethod
    async def claim_code_attempt(
        self, email: str, purpose: CodePurpose, code: str, max_attempts: int
    ) -> int | None:
        """Reserve one guess against the stored code before it is compared.

        The counter is incremented only while the code is unused, still equals
        ``code`` and has fewer than ``max_attempts`` attempts; the check and the
        increment are one atomic step. Returns the new count, or None when no
        guess may be made.
        """

    @abstractmethod
    async def consume_verification_code(self, email: str, purpose: CodePurpose, code: str) -> bool:
        """Atomically mark an unused code as used.

        Returns True for exactly one caller when several race on the same code.
        """

    @abstractmethod
    async def delete_verification_code(self, email: str, purpose: CodePurpose) -> None: ...

    @abstractmethod
    async def delete_verification_codes(self, email: str) -> None: ...

    @abstractmethod
    async def latest_code_issued_at(self, email: str) -> datetime | None:
        """Most recent issuance time for any purpose."""

    # Login attempts

    @abstractmethod
    async def get_login_attempt(self, email: str) -> LoginAttemptRecord | None: ...

    @abstractmethod
    async def record_login_failure(
        self, email: str, now: datetime, max_attempts: int, lockout: timedelta
    ) -> LoginAttemptRecord:
        """Count one failed login atomically and return the resulting record.

        Follows ``LoginAttemptRecord.after_failure``: a running lock is left
        alone, the failure that reaches ``max_attempts`` sets the lock.
        """

    @abstractmethod
    async def delete_login_attempt(self, email: str) -> None: ...

    # Sessions

    @abstractmethod
    async def get_session(self, session_id: str) -> SessionRecord | None: ...

    @abstractmethod
    async def put_session(self, record: SessionRecord) -> None: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> None: ...

    @abstractmethod
    async def delete_user_sessions(self, user_id: int) -> None: ...

    # Habits

    @abstractmethod
    async def get_habits(self, user_id: int) -> list[StoredHabit]:
        """Return the user's habits ordered by sort_order."""

    @abstractmethod
    async def replace_habits(self, user_id: int, habits: list[StoredHabit]) -> None:
        """Replace the user's whole habit and entry set in one all-or-nothing step."""

    # Maintenance

    @abstractmethod
    async def purge_expired(self, now: datetime, session_timeout_seconds: int) -> int:
        """Delete expired codes, pending registrations, lapsed lockouts and idle sessions."""
