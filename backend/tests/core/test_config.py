"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings, settings

SECURE_KEY = "k" * 40


def test_settings_loads():
    assert settings.APP_NAME == "HabitDot"
    assert settings.SESSION_COOKIE_NAME == "habitdot_session"
    assert settings.MAX_LOGIN_ATTEMPTS == 5
    assert settings.LOGIN_LOCKOUT_SECONDS == 900
    assert settings.SESSION_TIMEOUT_SECONDS == 3600


def test_short_encryption_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(HABIT_ENCRYPTION_KEY="too-short")


def test_empty_encryption_key_rejected():
    with pytest.raises(ValidationError, match="must be set"):
        Settings(HABIT_ENCRYPTION_KEY="   ")


def test_insecure_default_rejected_outside_debug(monkeypatch):
    monkeypatch.setenv("DEBUG", "false")
    with pytest.raises(ValidationError, match="insecure default"):
        Settings(HABIT_ENCRYPTION_KEY="dev-encryption-key-change-in-prod")


def test_insecure_default_allowed_in_debug(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    test_settings = Settings(HABIT_ENCRYPTION_KEY="dev-encryption-key-change-in-prod")
    assert test_settings.HABIT_ENCRYPTION_KEY == "dev-encryption-key-change-in-prod"


@pytest.mark.parametrize("minutes", [14, 31])
def test_pending_registration_ttl_bounds(minutes):
    with pytest.raises(ValidationError):
        Settings(HABIT_ENCRYPTION_KEY=SECURE_KEY, PENDING_REGISTRATION_TTL_MINUTES=minutes)


def test_unknown_storage_backend_rejected():
    with pytest.raises(ValidationError):
        Settings(HABIT_ENCRYPTION_KEY=SECURE_KEY, STORAGE_BACKEND="redis")


def test_log_level_normalized():
    assert Settings(HABIT_ENCRYPTION_KEY=SECURE_KEY, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"


def test_is_sqlite():
    assert Settings(HABIT_ENCRYPTION_KEY=SECURE_KEY, DATABASE_URL="sqlite+aiosqlite:///x.db").is_sqlite
    assert not Settings(
        HABIT_ENCRYPTION_KEY=SECURE_KEY,
        DATABASE_URL="postgresql+asyncpg://u:p@db/habitdot",
    ).is_sqlite
