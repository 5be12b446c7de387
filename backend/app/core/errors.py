"""
Standardized error response system.

Every error leaves the API as:

    {"success": false, "error": "<message>", "code": "<ERROR_CODE>", "request_id": "..."}

so clients can branch on ``success`` the same way for every endpoint.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCode:
    """Standard error codes."""

    # Validation errors (user-correctable)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Authentication/Authorization
    AUTH_ERROR = "AUTH_ERROR"
    FORBIDDEN = "FORBIDDEN"
    INVALID_CSRF_TOKEN = "INVALID_CSRF_TOKEN"

    # Throttling
    RATE_LIMITED = "RATE_LIMITED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # External service errors
    EMAIL_DELIVERY_FAILED = "EMAIL_DELIVERY_FAILED"
    EMAIL_NOT_CONFIGURED = "EMAIL_NOT_CONFIGURED"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.AUTH_ERROR,
    status.HTTP_403_FORBIDDEN: ErrorCode.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_429_TOO_MANY_REQUESTS: ErrorCode.RATE_LIMITED,
}


class ErrorResponse:
    """Standard error response format."""

    @staticmethod
    def create(
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            code: Machine-readable error code
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details (optional)
            request_id: Request correlation ID (optional)
            headers: Extra response headers, e.g. Retry-After (optional)

        Returns:
            JSONResponse with standard error format
        """
        error_data: Dict[str, Any] = {
            "success": False,
            "error": message,
            "code": code,
        }

        if details:
            error_data["details"] = details

        if request_id:
            error_data["request_id"] = request_id

        return JSONResponse(status_code=status_code, content=error_data, headers=headers)


class HTTPError(HTTPException):
    """
    Enhanced HTTPException with standard error response format.

    Usage:
        raise HTTPError(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            message="User not found",
            details={"user_id": 123}
        )
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """Handle HTTPError exceptions and return standardized error response."""
    return ErrorResponse.create(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=_request_id(request),
        headers=exc.headers,
    )


async def starlette_http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework-raised HTTP errors (404 route, 405 method) in the standard format."""
    return ErrorResponse.create(
        code=_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        message=str(exc.detail),
        status_code=exc.status_code,
        request_id=_request_id(request),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a user-correctable 400, not a 422."""
    errors = exc.errors()
    logger.info(f"Request validation failed on {request.url.path}: {len(errors)} error(s)")

    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid value for '{field}': {first.get('msg')}" if field else str(first.get("msg"))

    return ErrorResponse.create(
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        status_code=status.HTTP_400_BAD_REQUEST,
        request_id=_request_id(request),
    )


# Convenience functions for common errors

def unauthorized(message: str = "Not authenticated", details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 401 AUTH_ERROR error."""
    return HTTPError(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.AUTH_ERROR,
        message=message,
        details=details,
    )


def invalid_csrf_token() -> HTTPError:
    """Create a 403 INVALID_CSRF_TOKEN error."""
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.INVALID_CSRF_TOKEN,
        message="Invalid CSRF token",
    )


def rate_limited(message: str, retry_after: int) -> HTTPError:
    """Create a 429 RATE_LIMITED error carrying a Retry-After estimate."""
    retry_after = max(0, int(retry_after))
    return HTTPError(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        code=ErrorCode.RATE_LIMITED,
        message=message,
        details={"retry_after": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


def validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 400 VALIDATION_ERROR error."""
    return HTTPError(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        details=details,
    )


def conflict(message: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a CONFLICT error.

    Duplicate accounts are reported as a plain 400 so that the response looks
    like any other rejected form submission.
    """
    return HTTPError(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.CONFLICT,
        message=message,
        details=details,
    )


def email_delivery_failed() -> HTTPError:
    """Create a 502 EMAIL_DELIVERY_FAILED error.

    The transport error itself is logged, never returned.
    """
    return HTTPError(
        status_code=status.HTTP_502_BAD_GATEWAY,
        code=ErrorCode.EMAIL_DELIVERY_FAILED,
        message="Failed to send verification email. Please request a new code shortly.",
    )


def email_not_configured() -> HTTPError:
    """Create a 503 EMAIL_NOT_CONFIGURED error."""
    return HTTPError(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code=ErrorCode.EMAIL_NOT_CONFIGURED,
        message="Email verification is not configured. Please contact the administrator.",
    )
