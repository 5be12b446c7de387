"""
Verification code manager.

Issues and checks short-lived one-time codes for registration and password
reset, throttles resends, and keeps the pending (unconfirmed) registrations
that registration codes confirm.

Rules:
- one active code per (email, purpose); issuing replaces the previous one
- a code is consumed atomically on its first successful verification
- each guess is charged before comparison; after 5 wrong ones the code is
  locked until a new one is issued
- a new code for an email can be requested at most once per cooldown window
"""

import hmac
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from app.core.config import settings
from app.services.email import (
    EmailResult,
    EmailSender,
    send_password_reset_email,
    send_verification_code_email,
)
from app.services.users import normalize_email
from app.storage.base import Store
from app.storage.records import CodePurpose, PendingRegistrationRecord, VerificationCodeRecord
from app.utils import clock

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
RESET_TOKEN_BYTES = 32


class VerificationFailure(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    MISMATCH = "mismatch"


@dataclass
class VerificationResult:
    valid: bool
    error: VerificationFailure | None = None
    attempts_remaining: int | None = None

    @property
    def message(self) -> str | None:
        if self.error is VerificationFailure.NOT_FOUND:
            return "No verification code found for this email"
        if self.error is VerificationFailure.EXPIRED:
            return "Verification code has expired"
        if self.error is VerificationFailure.TOO_MANY_ATTEMPTS:
            return "Too many failed attempts. Please request a new code"
        if self.error is VerificationFailure.MISMATCH:
            return f"Invalid code. {self.attempts_remaining} attempts remaining"
        return None


@dataclass
class IssuedCode:
    code: str
    expires_at: datetime
    delivery: EmailResult

    @property
    def delivered(self) -> bool:
        return self.delivery.success


def generate_code() -> str:
    """Cryptographically random 6-digit code, leading zeros kept."""
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


def codes_match(expected: str, supplied: str) -> bool:
    """Constant-time comparison."""
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


class VerificationCodeManager:
    def __init__(self, store: Store, email_sender: EmailSender):
        self.store = store
        self.email_sender = email_sender

    async def _put_code(self, email: str, purpose: CodePurpose, code: str, ttl_minutes: int) -> VerificationCodeRecord:
        now = clock.utcnow()
        record = VerificationCodeRecord(
            email=email,
            purpose=purpose,
            code=code,
            created_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
            used=False,
            attempts=0,
        )
        await self.store.put_verification_code(record)
        return record

    async def issue(self, email: str, purpose: CodePurpose, ttl_minutes: int | None = None) -> IssuedCode:
        """
        Generate, store and email a new code.

        The code is stored before delivery is attempted; a delivery failure is
        reported in ``IssuedCode.delivery`` and the code stays valid so a later
        resend can replace it.
        """
        purpose = CodePurpose(purpose)
        if purpose is CodePurpose.RESET_TOKEN:
            raise ValueError("Reset tokens are not emailed; use issue_reset_token()")

        email = normalize_email(email)
        ttl = ttl_minutes or settings.VERIFICATION_CODE_TTL_MINUTES
        record = await self._put_code(email, purpose, generate_code(), ttl)

        if purpose is CodePurpose.REGISTRATION:
            delivery = await send_verification_code_email(self.email_sender, email, record.code, ttl)
        else:
            delivery = await send_password_reset_email(self.email_sender, email, record.code, ttl)

        if not delivery.success:
            logger.error(f"Failed to deliver {purpose.value} code: {delivery.error}")

        return IssuedCode(code=record.code, expires_at=record.expires_at, delivery=delivery)

    async def issue_reset_token(self, email: str, ttl_minutes: int | None = None) -> str:
        """Issue the token that authorizes one password reset after its code was confirmed."""
        email = normalize_email(email)
        token = secrets.token_urlsafe(RESET_TOKEN_BYTES)
        await self._put_code(
            email,
            CodePurpose.RESET_TOKEN,
            token,
            ttl_minutes or settings.VERIFICATION_CODE_TTL_MINUTES,
        )
        return token

    async def verify(self, email: str, code: str, purpose: CodePurpose) -> VerificationResult:
        email = normalize_email(email)
        purpose = CodePurpose(purpose)
        record = await self.store.get_verification_code(email, purpose)

        if record is None or record.used:
            return VerificationResult(valid=False, error=VerificationFailure.NOT_FOUND)

        if record.is_expired(clock.utcnow()):
            await self.store.delete_verification_code(email, purpose)
            return VerificationResult(valid=False, error=VerificationFailure.EXPIRED)

        if record.attempts >= settings.MAX_CODE_ATTEMPTS:
            return VerificationResult(valid=False, error=VerificationFailure.TOO_MANY_ATTEMPTS)

        # Every guess is charged before it is compared
        attempts = await self.store.claim_code_attempt(
            email, purpose, record.code, settings.MAX_CODE_ATTEMPTS
        )
        if attempts is None:
            current = await self.store.get_verification_code(email, purpose)
            if current is None or current.used or current.code != record.code:
                return VerificationResult(valid=False, error=VerificationFailure.NOT_FOUND)
            return VerificationResult(valid=False, error=VerificationFailure.TOO_MANY_ATTEMPTS)

        if not codes_match(record.code, code.strip()):
            remaining = max(0, settings.MAX_CODE_ATTEMPTS - attempts)
            logger.info(f"Wrong {purpose.value} code, {remaining} attempt(s) left")
            return VerificationResult(
                valid=False,
                error=VerificationFailure.MISMATCH,
                attempts_remaining=remaining,
            )

        # Compare-and-set against the exact code we matched: a concurrent
        # verify or a reissue in between makes this lose
        if not await self.store.consume_verification_code(email, purpose, record.code):
            return VerificationResult(valid=False, error=VerificationFailure.NOT_FOUND)

        return VerificationResult(valid=True)

    async def can_resend(self, email: str) -> tuple[bool, int]:
        """
        Check the resend cooldown for an email, across all purposes.

        Returns:
            (allowed, wait_seconds)
        """
        issued_at = await self.store.latest_code_issued_at(normalize_email(email))
        if issued_at is None:
            return True, 0

        elapsed = (clock.utcnow() - issued_at).total_seconds()
        wait = settings.RESEND_COOLDOWN_SECONDS - elapsed
        if wait > 0:
            return False, math.ceil(wait)
        return True, 0

    # Pending registrations

    async def store_pending(self, email: str, password_hash: str) -> PendingRegistrationRecord:
        now = clock.utcnow()
        record = PendingRegistrationRecord(
            email=normalize_email(email),
            password_hash=password_hash,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.PENDING_REGISTRATION_TTL_MINUTES),
        )
        await self.store.put_pending_registration(record)
        return record

    async def get_pending(self, email: str) -> PendingRegistrationRecord | None:
        email = normalize_email(email)
        record = await self.store.get_pending_registration(email)
        if record is not None and record.is_expired(clock.utcnow()):
            await self.store.delete_pending_registration(email)
            return None
        return record

    async def remove_pending(self, email: str) -> None:
        await self.store.delete_pending_registration(normalize_email(email))
