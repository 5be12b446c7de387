import logging

from fastapi import APIRouter, Response

from app.api.deps import CSRFProtected, CurrentUser, SessionDep, SessionManagerDep, StoreDep
from app.core.errors import unauthorized, validation_error
from app.core.security import validate_password, verify_password
from app.schemas.account import ChangePasswordRequest, DeleteAccountRequest
from app.services import users
from app.services.sessions import apply_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["account"])


@router.post("/change-password", dependencies=[CSRFProtected])
async def change_password(body: ChangePasswordRequest, current_user: CurrentUser, store: StoreDep):
    """Change the password of the logged-in user after re-checking the current one."""
    if not verify_password(body.current_password, current_user.password_hash):
        raise unauthorized("Current password is incorrect")

    is_valid, error_msg = validate_password(body.new_password)
    if not is_valid:
        raise validation_error(error_msg)

    await users.set_password(store, current_user, body.new_password)
    return {"success": True, "message": "Password changed successfully"}


@router.post("/delete-account", dependencies=[CSRFProtected])
async def delete_account(
    body: DeleteAccountRequest,
    response: Response,
    current_user: CurrentUser,
    store: StoreDep,
    ctx: SessionDep,
    sessions: SessionManagerDep,
):
    """Delete the account with all its habits, then end the session."""
    if not verify_password(body.password, current_user.password_hash):
        raise unauthorized("Password is incorrect")

    await users.delete_account(store, current_user)
    await sessions.destroy(ctx)
    apply_cookie(response, ctx)
    return {"success": True, "message": "Account deleted successfully"}
