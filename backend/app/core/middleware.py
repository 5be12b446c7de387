"""Custom middleware for request validation and error handling."""

import logging
from typing import Callable

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.errors import ErrorCode, ErrorResponse

logger = logging.getLogger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Reject oversized bodies and non-JSON bodies before routing.

    Bodyless POSTs (logout) pass; anything with a body must be JSON.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_request_size: int = 1024 * 1024,
        enforce_content_type: bool = True,
    ) -> None:
        super().__init__(app)
        self.max_request_size = max_request_size
        self.enforce_content_type = enforce_content_type

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        size = 0
        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                size = 0

        if size > self.max_request_size:
            logger.warning(f"Request too large: {size} bytes on {request.url.path}")
            return ErrorResponse.create(
                code=ErrorCode.VALIDATION_ERROR,
                message=f"Request too large. Maximum size is {self.max_request_size} bytes",
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                request_id=_request_id(request),
            )

        has_body = size > 0 or "transfer-encoding" in request.headers
        if self.enforce_content_type and request.method in BODY_METHODS and has_body:
            content_type = request.headers.get("content-type", "")
            if not content_type.startswith("application/json"):
                logger.warning(f"Invalid Content-Type on {request.url.path}: {content_type}")
                return ErrorResponse.create(
                    code=ErrorCode.VALIDATION_ERROR,
                    message="Content-Type must be application/json",
                    status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                    request_id=_request_id(request),
                )

        return await call_next(request)


class ErrorResponseMiddleware(BaseHTTPMiddleware):
    """Last-resort handler: anything unhandled becomes a sanitized 500."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            logger.exception(f"Unhandled error: {request.method} {request.url.path}")
            return ErrorResponse.create(
                code=ErrorCode.INTERNAL_ERROR,
                message="Internal server error",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                request_id=_request_id(request),
            )
