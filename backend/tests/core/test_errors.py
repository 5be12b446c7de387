"""Tests for the standardized error responses."""

import json

from app.core.errors import (
    ErrorCode,
    ErrorResponse,
    conflict,
    email_delivery_failed,
    invalid_csrf_token,
    rate_limited,
    unauthorized,
)


def test_error_response_shape():
    response = ErrorResponse.create(
        code=ErrorCode.NOT_FOUND,
        message="Habit not found",
        status_code=404,
        request_id="req-1",
    )
    assert response.status_code == 404
    assert json.loads(response.body) == {
        "success": False,
        "error": "Habit not found",
        "code": "NOT_FOUND",
        "request_id": "req-1",
    }


def test_rate_limited_carries_retry_after():
    error = rate_limited("Too many login attempts", 900)
    assert error.status_code == 429
    assert error.headers == {"Retry-After": "900"}
    assert error.details == {"retry_after": 900}


def test_conflict_is_plain_bad_request():
    error = conflict("An account with this email already exists")
    assert error.status_code == 400
    assert error.code == ErrorCode.CONFLICT


def test_auth_and_csrf_errors():
    assert unauthorized().status_code == 401
    assert unauthorized().message == "Not authenticated"
    assert invalid_csrf_token().status_code == 403
    assert invalid_csrf_token().message == "Invalid CSRF token"


def test_email_delivery_failure_hides_transport_error():
    error = email_delivery_failed()
    assert error.status_code == 502
    assert "Brevo" not in error.message
