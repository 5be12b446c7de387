import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Known placeholder values that must never reach production
INSECURE_DEFAULTS = [
    "dev-encryption-key-change-in-prod",
    "replace_with_your_key_from_openssl_rand_base64_32",
    "secret",
    "changeme",
]


def _get_version() -> str:
    """Read version from pyproject.toml or environment variable."""
    # First check environment variable (for Docker/CI overrides)
    if env_version := os.getenv("HABITDOT_VERSION"):
        return env_version

    # Try to read from pyproject.toml at the repository root
    try:
        pyproject_path = Path(__file__).parent.parent.parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            content = pyproject_path.read_text()
            for line in content.split("\n"):
                if line.startswith("version"):
                    # Parse: version = "0.1.0"
                    return line.split("=")[1].strip().strip('"').strip("'")
    except Exception:
        pass

    return "0.0.0-dev"


# Application version - read from pyproject.toml, env var, or default to dev
APP_VERSION = _get_version()


class Settings(BaseSettings):
    # App
    APP_NAME: str = "HabitDot"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Public URL where the application is accessible (used in emails)
    APP_URL: str | None = None

    # Storage: "memory" (tests), "file" (flat-file JSON) or "database"
    STORAGE_BACKEND: str = "database"
    DATA_DIR: str = "./data"
    DATABASE_URL: str = "sqlite+aiosqlite:///./habitdot.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Master secret for per-user habit name encryption
    # In production, ALWAYS override via env var
    HABIT_ENCRYPTION_KEY: str = "dev-encryption-key-change-in-prod"

    # Sessions
    SESSION_TIMEOUT_SECONDS: int = 3600  # 1 hour idle timeout
    SESSION_COOKIE_NAME: str = "habitdot_session"

    # Login rate limiting
    MAX_LOGIN_ATTEMPTS: int = 5
    LOGIN_LOCKOUT_SECONDS: int = 900  # 15 minutes

    # Verification codes
    VERIFICATION_CODE_TTL_MINUTES: int = 15
    PENDING_REGISTRATION_TTL_MINUTES: int = 30
    RESEND_COOLDOWN_SECONDS: int = 60
    MAX_CODE_ATTEMPTS: int = 5

    # Email (Brevo transactional API)
    EMAIL_ENABLED: bool = False
    BREVO_API_KEY: str = ""
    BREVO_API_URL: str = "https://api.brevo.com/v3/smtp/email"
    EMAIL_FROM_ADDRESS: str = "noreply@habitdot.app"
    EMAIL_FROM_NAME: str = "HabitDot"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    @field_validator("HABIT_ENCRYPTION_KEY")
    @classmethod
    def validate_secrets(cls, v: str, info) -> str:
        """Validate that the master key is set and not a default value in production."""
        if not v or v.strip() == "":
            raise ValueError(
                f"{info.field_name} must be set in environment variables. "
                f"Generate a secure random key using: openssl rand -base64 32"
            )

        if v.lower() in INSECURE_DEFAULTS:
            # Reject outright unless DEBUG is set in the environment
            debug_mode = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

            if not debug_mode:
                raise ValueError(
                    f"{info.field_name} is using an insecure default value. "
                    f"This is NEVER acceptable in production. "
                    f"Generate a secure key using: openssl rand -base64 32"
                )

            import logging
            logger = logging.getLogger(__name__)
            logger.warning(
                f"{info.field_name} is using an insecure default value in DEBUG mode. "
                f"This is acceptable for development but MUST be changed in production!"
            )
        elif len(v) < 32:
            raise ValueError(
                f"{info.field_name} must be at least 32 characters long for security. "
                f"Generate a secure key using: openssl rand -base64 32"
            )

        return v

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in ("memory", "file", "database"):
            raise ValueError("STORAGE_BACKEND must be 'memory', 'file' or 'database'")
        return v

    @field_validator("PENDING_REGISTRATION_TTL_MINUTES")
    @classmethod
    def validate_pending_ttl(cls, v: int) -> int:
        if not 15 <= v <= 30:
            raise ValueError("PENDING_REGISTRATION_TTL_MINUTES must be between 15 and 30")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
