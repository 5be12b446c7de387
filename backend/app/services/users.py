"""
Credential store.

Identity records (email, password hash, verification state) on top of the
configured Store. Emails are normalized before every lookup.
"""

import logging

from app.core.security import get_password_hash, verify_password
from app.storage.base import Store
from app.storage.records import UserRecord

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so both paths cost one bcrypt check
_DUMMY_HASH = get_password_hash("habitdot-timing-equalizer")


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_email(store: Store, email: str) -> UserRecord | None:
    return await store.get_user_by_email(normalize_email(email))


async def create_verified_user(store: Store, email: str, password_hash: str) -> UserRecord:
    """Persist a user whose email has just been confirmed.

    Raises:
        StoreConflictError: an account with this email already exists
    """
    user = await store.create_user(normalize_email(email), password_hash, verified=True)
    logger.info(f"Created user {user.id}")
    return user


async def authenticate(store: Store, email: str, password: str) -> UserRecord | None:
    """Return the user if the password matches, else None."""
    user = await get_user_by_email(store, email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


async def set_password(store: Store, user: UserRecord, new_password: str) -> None:
    await store.update_password(user.id, get_password_hash(new_password))
    logger.info(f"Password updated for user {user.id}")


async def delete_account(store: Store, user: UserRecord) -> None:
    """Delete a user with all habits, sessions and per-email auth state."""
    await store.delete_user(user.id)
    await store.delete_pending_registration(user.email)
    await store.delete_verification_codes(user.email)
    await store.delete_login_attempt(user.email)
    logger.info(f"Deleted account for user {user.id}")
