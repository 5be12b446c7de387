import logging
import math
from typing import Annotated

from fastapi import APIRouter, Depends, Response

from app.api.deps import (
    CSRFProtected,
    SessionDep,
    SessionManagerDep,
    StoreDep,
    VerificationDep,
    get_email_sender,
)
from app.core.errors import (
    conflict,
    email_delivery_failed,
    email_not_configured,
    rate_limited,
    unauthorized,
    validation_error,
)
from app.core.exceptions import StoreConflictError
from app.core.security import get_password_hash, validate_password
from app.schemas.auth import (
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyCodeRequest,
)
from app.services import rate_limit, users
from app.services.email import EmailSender
from app.services.sessions import apply_cookie
from app.services.verification import VerificationResult
from app.storage.records import CodePurpose, UserRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid email or password"
RESET_REQUESTED_MESSAGE = "If an account exists for this email, a password reset code has been sent"


def _user_payload(user: UserRecord) -> dict:
    return {"id": user.id, "email": user.email}


def _verification_failed(result: VerificationResult):
    details = {"reason": result.error.value}
    if result.attempts_remaining is not None:
        details["attempts_remaining"] = result.attempts_remaining
    return validation_error(result.message, details=details)


@router.get("/csrf")
async def get_csrf_token(response: Response, ctx: SessionDep, sessions: SessionManagerDep):
    """Hand out the session's CSRF token, opening an anonymous session if needed."""
    token = await sessions.ensure_csrf_token(ctx)
    apply_cookie(response, ctx)
    return {"success": True, "csrf_token": token}


@router.get("/check")
async def check_session(response: Response, ctx: SessionDep, store: StoreDep, sessions: SessionManagerDep):
    """Report whether the session is logged in. Loading the session refreshes its activity."""
    if ctx.is_authenticated:
        user = await store.get_user_by_id(ctx.user_id)
        if user is not None:
            return {
                "success": True,
                "loggedIn": True,
                "user": _user_payload(user),
                "csrf_token": ctx.session.csrf_token,
            }
        await sessions.destroy(ctx)

    apply_cookie(response, ctx)
    result = {"success": True, "loggedIn": False}
    if ctx.session is not None and ctx.session.csrf_token:
        result["csrf_token"] = ctx.session.csrf_token
    return result


@router.post("/register", dependencies=[CSRFProtected])
async def register(
    body: RegisterRequest,
    store: StoreDep,
    verification: VerificationDep,
    sender: Annotated[EmailSender, Depends(get_email_sender)],
):
    """
    Start a registration.

    The account is not created here: the password hash waits in a pending
    registration until the emailed code is confirmed through /verify.
    """
    email = users.normalize_email(body.email)

    is_valid, error_msg = validate_password(body.password)
    if not is_valid:
        raise validation_error(error_msg)

    if await users.get_user_by_email(store, email) is not None:
        raise conflict("An account with this email already exists")

    if not sender.enabled:
        raise email_not_configured()

    allowed, wait_seconds = await verification.can_resend(email)
    if not allowed:
        raise rate_limited(f"Please wait {wait_seconds} seconds before requesting a new code", wait_seconds)

    await verification.store_pending(email, get_password_hash(body.password))
    issued = await verification.issue(email, CodePurpose.REGISTRATION)
    if not issued.delivered:
        raise email_delivery_failed()

    return {
        "success": True,
        "message": "Verification code sent to your email",
        "email": email,
    }


@router.post("/verify", dependencies=[CSRFProtected])
async def verify_registration(
    body: VerifyCodeRequest,
    response: Response,
    store: StoreDep,
    ctx: SessionDep,
    sessions: SessionManagerDep,
    verification: VerificationDep,
):
    """Confirm a registration code, create the account and log it in."""
    email = users.normalize_email(body.email)

    result = await verification.verify(email, body.code, CodePurpose.REGISTRATION)
    if not result.valid:
        raise _verification_failed(result)

    pending = await verification.get_pending(email)
    if pending is None:
        raise validation_error("No pending registration found. Please register again.")

    try:
        user = await users.create_verified_user(store, email, pending.password_hash)
    except StoreConflictError:
        await verification.remove_pending(email)
        raise conflict("An account with this email already exists")

    await verification.remove_pending(email)
    await sessions.authenticate(ctx, user)
    apply_cookie(response, ctx)

    return {
        "success": True,
        "message": "Account created successfully",
        "user": _user_payload(user),
        "csrf_token": ctx.session.csrf_token,
    }


@router.post("/resend", dependencies=[CSRFProtected])
async def resend_code(body: EmailRequest, verification: VerificationDep):
    """Send a fresh registration code for a pending registration."""
    email = users.normalize_email(body.email)

    allowed, wait_seconds = await verification.can_resend(email)
    if not allowed:
        raise rate_limited(f"Please wait {wait_seconds} seconds before requesting a new code", wait_seconds)

    message = "New verification code sent to your email"
    if await verification.get_pending(email) is None:
        # Same answer as the normal path; the endpoint does not reveal registrations
        return {"success": True, "message": message}

    issued = await verification.issue(email, CodePurpose.REGISTRATION)
    if not issued.delivered:
        raise email_delivery_failed()

    return {"success": True, "message": message}


@router.post("/login", dependencies=[CSRFProtected])
async def login(
    body: LoginRequest,
    response: Response,
    store: StoreDep,
    ctx: SessionDep,
    sessions: SessionManagerDep,
):
    email = users.normalize_email(body.email)

    locked, remaining = await rate_limit.get_lock_status(store, email)
    if locked:
        minutes = math.ceil(remaining / 60)
        raise rate_limited(f"Too many login attempts. Please try again in {minutes} minutes.", remaining)

    user = await users.authenticate(store, email, body.password)
    if user is None:
        await rate_limit.record_failure(store, email)
        raise unauthorized(INVALID_CREDENTIALS)

    if not user.verified:
        raise unauthorized("Please verify your email before logging in")

    await rate_limit.record_success(store, email)
    await sessions.authenticate(ctx, user)
    apply_cookie(response, ctx)

    return {
        "success": True,
        "message": "Login successful",
        "user": _user_payload(user),
        "csrf_token": ctx.session.csrf_token,
    }


@router.post("/logout")
async def logout(response: Response, ctx: SessionDep, sessions: SessionManagerDep):
    await sessions.destroy(ctx)
    apply_cookie(response, ctx)
    return {"success": True, "message": "Logged out successfully"}


@router.post("/forgot-password", dependencies=[CSRFProtected])
async def forgot_password(body: EmailRequest, store: StoreDep, verification: VerificationDep):
    """Email a password reset code. The answer never reveals whether the account exists."""
    email = users.normalize_email(body.email)

    user = await users.get_user_by_email(store, email)
    if user is None:
        return {"success": True, "message": RESET_REQUESTED_MESSAGE}

    allowed, wait_seconds = await verification.can_resend(email)
    if not allowed:
        logger.info(f"Password reset code throttled for {wait_seconds}s")
        return {"success": True, "message": RESET_REQUESTED_MESSAGE}

    # Delivery failures are logged by the manager and not reported back
    await verification.issue(email, CodePurpose.PASSWORD_RESET)
    return {"success": True, "message": RESET_REQUESTED_MESSAGE}


@router.post("/verify-reset-code", dependencies=[CSRFProtected])
async def verify_reset_code(body: VerifyCodeRequest, store: StoreDep, verification: VerificationDep):
    """Trade a valid password reset code for a single-use reset token."""
    email = users.normalize_email(body.email)

    result = await verification.verify(email, body.code, CodePurpose.PASSWORD_RESET)
    if not result.valid:
        raise _verification_failed(result)

    if await users.get_user_by_email(store, email) is None:
        raise validation_error("Invalid or expired reset request")

    token = await verification.issue_reset_token(email)
    return {"success": True, "reset_token": token}


@router.post("/reset-password", dependencies=[CSRFProtected])
async def reset_password(body: ResetPasswordRequest, store: StoreDep, verification: VerificationDep):
    email = users.normalize_email(body.email)

    is_valid, error_msg = validate_password(body.new_password)
    if not is_valid:
        raise validation_error(error_msg)

    result = await verification.verify(email, body.reset_token, CodePurpose.RESET_TOKEN)
    if not result.valid:
        raise validation_error("Invalid or expired reset token")

    user = await users.get_user_by_email(store, email)
    if user is None:
        raise validation_error("Invalid or expired reset token")

    await users.set_password(store, user, body.new_password)
    await rate_limit.record_success(store, email)
    # Anyone still holding a session for this account must log in again
    await store.delete_user_sessions(user.id)

    return {"success": True, "message": "Password has been reset. You can now log in."}
