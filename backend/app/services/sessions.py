"""
Server-side sessions.

A session is identified by an opaque random id carried in the session cookie.
It starts anonymous (holding only a CSRF token so login and registration forms
can be protected), is upgraded when a user authenticates, and ends on logout,
account deletion or after SESSION_TIMEOUT_SECONDS without activity.

Handlers work on a ``SessionContext``; whenever the session id changes or the
session goes away the context is marked dirty and ``apply_cookie`` writes the
new cookie state onto the response.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Response

from app.core.config import settings
from app.core.csrf import generate_csrf_token, tokens_match
from app.core.errors import invalid_csrf_token
from app.storage.base import Store
from app.storage.records import SessionRecord, UserRecord
from app.utils import clock

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 32


@dataclass
class SessionContext:
    session: SessionRecord | None = None
    cookie_dirty: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.session.is_authenticated

    @property
    def user_id(self) -> int | None:
        return self.session.user_id if self.session else None


def generate_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


class SessionManager:
    def __init__(self, store: Store, timeout_seconds: int | None = None):
        self.store = store
        self.timeout = timedelta(seconds=timeout_seconds or settings.SESSION_TIMEOUT_SECONDS)

    async def load(self, session_id: str | None) -> SessionRecord | None:
        """
        Fetch a live session and refresh its activity timestamp.

        Sessions idle longer than the timeout are deleted and reported absent.
        """
        if not session_id:
            return None

        session = await self.store.get_session(session_id)
        if session is None:
            return None

        now = clock.utcnow()
        if now - session.last_activity > self.timeout:
            logger.info("Session expired after inactivity")
            await self.store.delete_session(session_id)
            return None

        session.last_activity = now
        await self.store.put_session(session)
        return session

    async def load_context(self, session_id: str | None) -> SessionContext:
        session = await self.load(session_id)
        # A cookie pointing at nothing is cleared on the way out
        return SessionContext(session=session, cookie_dirty=bool(session_id) and session is None)

    async def ensure_csrf_token(self, ctx: SessionContext) -> str:
        """Return the session's CSRF token, creating an anonymous session if needed."""
        now = clock.utcnow()
        if ctx.session is None:
            ctx.session = SessionRecord(
                id=generate_session_id(),
                created_at=now,
                last_activity=now,
                csrf_token=generate_csrf_token(),
            )
            ctx.cookie_dirty = True
            await self.store.put_session(ctx.session)
        elif not ctx.session.csrf_token:
            ctx.session.csrf_token = generate_csrf_token()
            await self.store.put_session(ctx.session)
        return ctx.session.csrf_token

    async def authenticate(self, ctx: SessionContext, user: UserRecord) -> SessionRecord:
        """
        Bind the context to ``user`` under a fresh session id.

        The previous session (anonymous or not) is deleted; its CSRF token
        carries over so forms already rendered keep working.
        """
        now = clock.utcnow()
        previous = ctx.session
        csrf_token = previous.csrf_token if previous and previous.csrf_token else generate_csrf_token()

        session = SessionRecord(
            id=generate_session_id(),
            created_at=now,
            last_activity=now,
            csrf_token=csrf_token,
            user_id=user.id,
            email=user.email,
        )
        await self.store.put_session(session)
        if previous is not None:
            await self.store.delete_session(previous.id)

        ctx.session = session
        ctx.cookie_dirty = True
        logger.info(f"Session authenticated for user {user.id}")
        return session

    async def destroy(self, ctx: SessionContext) -> None:
        if ctx.session is not None:
            await self.store.delete_session(ctx.session.id)
        ctx.session = None
        ctx.cookie_dirty = True

    def validate_csrf(self, ctx: SessionContext, token: str | None) -> None:
        """
        Raises:
            HTTPError: 403 when there is no session, no token, or they differ
        """
        expected = ctx.session.csrf_token if ctx.session else None
        if not tokens_match(expected, token):
            logger.warning("CSRF: token missing or mismatched for state-changing request")
            raise invalid_csrf_token()


def apply_cookie(response: Response, ctx: SessionContext) -> None:
    """Write the context's session id (or its removal) as the session cookie."""
    if not ctx.cookie_dirty:
        return

    if ctx.session is None:
        response.delete_cookie(
            key=settings.SESSION_COOKIE_NAME,
            path="/",
            httponly=True,
            secure=not settings.DEBUG,
            samesite="strict",
        )
        return

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=ctx.session.id,
        httponly=True,
        secure=not settings.DEBUG,  # HTTPS in production
        samesite="strict",
        max_age=settings.SESSION_TIMEOUT_SECONDS,
        path="/",
    )
