"""
HTTP integration — ErrorCode→HTTP status mapping and response bodies.

Framework-agnostic: callers wrap the (body, status) tuple in whatever
response type their host expects (serverless action dict, FastAPI, …).

    status = HttpStatusMapper.map_error_code(ErrorCode.NOT_FOUND)  # → 404
    body, status = build_response(result, success_body={})
"""

from __future__ import annotations

from typing import Any, TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


class HttpStatusMapper:
    """Maps failures to HTTP status codes."""

    _CODE_TO_STATUS: dict[ErrorCode, int] = {
        # Client errors (4xx)
        ErrorCode.VALIDATION_ERROR: 400,
        ErrorCode.AUTHENTICATION_ERROR: 401,
        ErrorCode.AUTHORIZATION_ERROR: 403,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.RATE_LIMIT_ERROR: 429,
        # Server errors (5xx)
        ErrorCode.TECHNICAL_ERROR: 500,
        ErrorCode.CONFIGURATION_ERROR: 500,
        ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
        ErrorCode.SERVICE_UNAVAILABLE_ERROR: 503,
        ErrorCode.TIMEOUT_ERROR: 504,
        ErrorCode.UNKNOWN_ERROR: 500,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        """Map an ErrorCode to an HTTP status code."""
        return cls._CODE_TO_STATUS.get(code, 500)

    @classmethod
    def map_failure(cls, failure: FailureDescription) -> int:
        """
        Map a FailureDescription to an HTTP status code.

        An error status (4xx/5xx) carried by the failure's exception as
        `status` wins over the ErrorCode mapping, so upstream statuses
        reach the caller unchanged.
        """
        status = getattr(failure.exception, "status", None)
        if isinstance(status, int) and 400 <= status <= 599:
            return status
        return cls.map_error_code(failure.code)


def build_response(
    result: Result[T],
    success_status: int = 200,
    success_body: Any = None,
) -> tuple[Any, int]:
    """
    Build a (body, status_code) tuple from a Result.

    Failures always produce `{"message": ...}` bodies; the message of a
    FailureDescription is meant for callers and carries no secrets.
    """
    return result.either(
        on_success=lambda value: (
            success_body if success_body is not None else value,
            success_status,
        ),
        on_failure=lambda error: (
            {"message": error.message or "Error processing your request."},
            HttpStatusMapper.map_failure(error),
        ),
    )
