"""
CSRF protection.

Synchronizer-token pattern: every session holds one random token, and every
state-changing request must echo it back, either in the ``X-CSRF-Token``
header or as a ``csrf_token`` field of the JSON body. The session cookie
itself is HttpOnly and SameSite=Strict.
"""

import json
import logging
import secrets

from fastapi import Request

logger = logging.getLogger(__name__)

# CSRF token length (bytes)
CSRF_TOKEN_LENGTH = 32

CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_BODY_FIELD = "csrf_token"


def generate_csrf_token() -> str:
    """Generate a secure random CSRF token."""
    return secrets.token_hex(CSRF_TOKEN_LENGTH)


def tokens_match(expected: str | None, supplied: str | None) -> bool:
    """Constant-time comparison; a missing value on either side never matches."""
    if not expected or not supplied:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


async def extract_csrf_token(request: Request) -> str | None:
    """
    Find the token a client submitted with this request.

    The header wins; otherwise a JSON object body is checked for a
    ``csrf_token`` field. Unparseable bodies simply yield no token, the
    request body validation reports them afterwards.
    """
    header_token = request.headers.get(CSRF_HEADER_NAME)
    if header_token:
        return header_token

    body = await request.body()
    if not body:
        return None

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        logger.debug("CSRF: request body is not JSON, no token in body")
        return None

    if isinstance(payload, dict):
        token = payload.get(CSRF_BODY_FIELD)
        if isinstance(token, str):
            return token
    return None
