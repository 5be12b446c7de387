"""
Rate limiting service for login protection.

Tracks failed login attempts per account (email) and enforces lockout policy.
Lock expiry is lazy: a lapsed lock is removed the next time it is checked.
Each failure is counted by the store in one atomic step, so concurrent
attempts cannot skip the lock.
"""

import logging
import math
from datetime import timedelta

from app.core.config import settings
from app.services.users import normalize_email
from app.storage.base import Store
from app.storage.records import LoginAttemptRecord
from app.utils import clock

logger = logging.getLogger(__name__)


async def get_lock_status(store: Store, email: str) -> tuple[bool, int | None]:
    """
    Check if account is locked due to too many failed attempts.

    Returns:
        (is_locked, remaining_seconds) - remaining_seconds is None if not locked
    """
    email = normalize_email(email)
    record = await store.get_login_attempt(email)
    if record is None or record.locked_until is None:
        return False, None

    now = clock.utcnow()
    if record.locked_until > now:
        remaining = math.ceil((record.locked_until - now).total_seconds())
        return True, max(1, remaining)

    # Lockout window elapsed: forget the record entirely
    await store.delete_login_attempt(email)
    return False, None


async def check_allowed(store: Store, email: str) -> bool:
    """Return False while the account is locked."""
    locked, _ = await get_lock_status(store, email)
    return not locked


async def record_failure(store: Store, email: str) -> LoginAttemptRecord:
    """Record a failed login attempt, locking the account on the last allowed one."""
    email = normalize_email(email)
    now = clock.utcnow()
    lockout = timedelta(seconds=settings.LOGIN_LOCKOUT_SECONDS)
    record = await store.record_login_failure(email, now, settings.MAX_LOGIN_ATTEMPTS, lockout)

    if record.locked_until == now + lockout:
        logger.warning(
            f"Account locked after {record.count} failed login attempts "
            f"for {settings.LOGIN_LOCKOUT_SECONDS}s"
        )

    return record


async def record_success(store: Store, email: str) -> None:
    """Clear failed attempts for an account after successful login."""
    await store.delete_login_attempt(normalize_email(email))
