from app.schemas.account import ChangePasswordRequest, DeleteAccountRequest
from app.schemas.auth import (
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyCodeRequest,
)
from app.schemas.data import HabitData, HabitItem, ImportRequest

__all__ = [
    "ChangePasswordRequest",
    "DeleteAccountRequest",
    "EmailRequest",
    "HabitData",
    "HabitItem",
    "ImportRequest",
    "LoginRequest",
    "RegisterRequest",
    "ResetPasswordRequest",
    "VerifyCodeRequest",
]
