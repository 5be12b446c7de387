"""
Logging configuration.

Development gets readable text logs; production gets one JSON object per line
rendered by structlog, with request ids merged in from context vars and
credentials, codes and email addresses masked before anything is written.
"""
import logging
import re
import sys
from typing import Any

from app.core.config import settings

REDACTED = "***REDACTED***"

# Any key containing one of these is blanked out entirely
SENSITIVE_KEYS = (
    "password",
    "token",
    "secret",
    "api_key",
    "api-key",
    "session",
    "cookie",
    "authorization",
)

# One-time codes; status_code and friends stay readable
CODE_KEYS = ("code", "verification_code", "reset_code")

_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")


def setup_logging() -> None:
    """Configure root logging for the current settings."""
    log_level = getattr(logging, settings.LOG_LEVEL)

    if settings.DEBUG:
        configure_development_logging(log_level)
    else:
        configure_production_logging(log_level)


def configure_development_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout,
        force=True,
    )
    _quiet_libraries()


def configure_production_logging(level: int) -> None:
    """JSON logs through structlog, for both structlog and stdlib loggers."""
    handler = logging.StreamHandler(sys.stdout)

    try:
        import structlog

        shared_processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive_data,
        ]

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                *shared_processors,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.UnicodeDecoder(),
                    structlog.processors.JSONRenderer(),
                ],
            )
        )

    except ImportError:
        # Fallback to python-json-logger if structlog not available
        from pythonjsonlogger import jsonlogger

        handler.setFormatter(
            jsonlogger.JsonFormatter(
                '%(asctime)s %(name)s %(levelname)s %(message)s',
                timestamp=True
            )
        )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    _quiet_libraries()


def _quiet_libraries() -> None:
    for name in ('sqlalchemy.engine', 'sqlalchemy.pool', 'aiosqlite', 'httpx', 'httpcore'):
        logging.getLogger(name).setLevel(logging.WARNING)


def redact_sensitive_data(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog processor: blank secret-looking keys and mask emails in strings."""
    redacted = {}
    for key, value in event_dict.items():
        if isinstance(key, str) and key != "event" and _is_sensitive(key):
            redacted[key] = REDACTED
        elif isinstance(value, str):
            redacted[key] = redact_string(value)
        else:
            redacted[key] = value
    return redacted


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return key_lower in CODE_KEYS or any(s in key_lower for s in SENSITIVE_KEYS)


def redact_string(value: str) -> str:
    """Mask email addresses: alice@example.com -> a***@example.com."""
    if "@" not in value:
        return value
    return _EMAIL_RE.sub(r"\1***@\2", value)
