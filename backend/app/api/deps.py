from typing import Annotated

from fastapi import Depends, Request

from app.core.config import settings
from app.core.csrf import extract_csrf_token
from app.core.errors import unauthorized
from app.services import email as email_service
from app.services.email import EmailSender
from app.services.sessions import SessionContext, SessionManager
from app.services.verification import VerificationCodeManager
from app.storage.base import Store
from app.storage.records import UserRecord


def get_store(request: Request) -> Store:
    """The store opened by the application lifespan."""
    return request.app.state.store


def get_email_sender() -> EmailSender:
    return email_service.get_email_sender()


def get_session_manager(store: Annotated[Store, Depends(get_store)]) -> SessionManager:
    return SessionManager(store)


def get_verification_manager(
    store: Annotated[Store, Depends(get_store)],
    sender: Annotated[EmailSender, Depends(get_email_sender)],
) -> VerificationCodeManager:
    return VerificationCodeManager(store, sender)


async def get_session_context(
    request: Request,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> SessionContext:
    """Load the session named by the cookie; resolved once per request."""
    return await sessions.load_context(request.cookies.get(settings.SESSION_COOKIE_NAME))


async def require_user(
    ctx: Annotated[SessionContext, Depends(get_session_context)],
    store: Annotated[Store, Depends(get_store)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> UserRecord:
    if not ctx.is_authenticated:
        raise unauthorized()

    user = await store.get_user_by_id(ctx.user_id)
    if user is None:
        # Account removed while the session was alive
        await sessions.destroy(ctx)
        raise unauthorized()

    return user


async def require_csrf(
    request: Request,
    ctx: Annotated[SessionContext, Depends(get_session_context)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
) -> None:
    """Reject state-changing requests that do not echo the session's CSRF token."""
    sessions.validate_csrf(ctx, await extract_csrf_token(request))


StoreDep = Annotated[Store, Depends(get_store)]
SessionDep = Annotated[SessionContext, Depends(get_session_context)]
SessionManagerDep = Annotated[SessionManager, Depends(get_session_manager)]
VerificationDep = Annotated[VerificationCodeManager, Depends(get_verification_manager)]
CurrentUser = Annotated[UserRecord, Depends(require_user)]
CSRFProtected = Depends(require_csrf)
