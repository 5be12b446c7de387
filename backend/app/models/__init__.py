from app.models.habit import Habit, HabitEntry
from app.models.login_attempt import LoginAttempt
from app.models.pending_registration import PendingRegistration
from app.models.user import User
from app.models.user_session import UserSession
from app.models.verification_code import VerificationCode

__all__ = [
    "Habit",
    "HabitEntry",
    "LoginAttempt",
    "PendingRegistration",
    "User",
    "UserSession",
    "VerificationCode",
]
