"""Backend-neutral records exchanged with a Store."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum


class CodePurpose(str, Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"
    RESET_TOKEN = "reset_token"


@dataclass
class UserRecord:
    id: int
    email: str
    password_hash: str
    verified: bool
    created_at: datetime


@dataclass
class PendingRegistrationRecord:
    email: str
    password_hash: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class VerificationCodeRecord:
    email: str
    purpose: CodePurpose
    code: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    attempts: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class LoginAttemptRecord:
    email: str
    count: int
    first_attempt_at: datetime
    last_attempt_at: datetime
    locked_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def after_failure(self, now: datetime, max_attempts: int, lockout: timedelta) -> "LoginAttemptRecord":
        """Counter state once one more failed login is recorded.

        A running lock is returned unchanged. A lapsed lock, or a last failure
        older than ``lockout``, starts a new count.
        """
        if self.is_locked(now):
            return self
        if self.locked_until is not None or now - self.last_attempt_at > lockout:
            return LoginAttemptRecord.first_failure(self.email, now, max_attempts, lockout)
        count = self.count + 1
        return replace(
            self,
            count=count,
            last_attempt_at=now,
            locked_until=now + lockout if count >= max_attempts else None,
        )

    @classmethod
    def first_failure(
        cls, email: str, now: datetime, max_attempts: int, lockout: timedelta
    ) -> "LoginAttemptRecord":
        return cls(
            email=email,
            count=1,
            first_attempt_at=now,
            last_attempt_at=now,
            locked_until=now + lockout if max_attempts <= 1 else None,
        )


@dataclass
class SessionRecord:
    id: str
    created_at: datetime
    last_activity: datetime
    csrf_token: str | None = None
    user_id: int | None = None
    email: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


@dataclass
class StoredHabit:
    """A habit as persisted: name already encrypted, completed dates only."""

    id: str
    name_encrypted: str
    color: str
    sort_order: int
    completed_dates: list[str] = field(default_factory=list)
