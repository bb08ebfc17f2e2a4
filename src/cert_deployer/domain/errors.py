"""
Error taxonomy — one exception type per way an invocation can fail.

Adapters raise these internally and move them onto the Result failure
track with `to_result()` (or `capture()` for awaitables), so no exception
crosses a port. The exception stays attached to the FailureDescription,
which lets the response builder use its `status`.

Every error carries:
  - an ErrorCode for the railway failure track
  - a numeric `status`: the upstream collaborator's status when it was an
    error status, otherwise the class default (500 unless stated)
  - a message that is safe to return to callers: never tokens, keys or
    the payload itself
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, ClassVar, TypeVar

from railway import ErrorCode
from railway.result import Result

from cert_deployer.domain.models import DeploymentOutcome

T = TypeVar("T")


class WorkflowError(Exception):
    """Base class of every terminal invocation failure."""

    error_code: ClassVar[ErrorCode] = ErrorCode.TECHNICAL_ERROR
    default_status: ClassVar[int] = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is None or not 400 <= status <= 599:
            status = self.default_status
        self.status = status

    def to_result(self) -> Result[Any]:
        return Result.failure(self.error_code, self.message, self)


class InvalidRequestError(WorkflowError):
    """Invocation parameters are missing or malformed."""

    error_code = ErrorCode.VALIDATION_ERROR
    default_status = 400


class KeyFetchError(WorkflowError):
    """The notification public key could not be obtained."""

    error_code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, message: str, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message, status)
        self.body = body


class InvalidSignatureError(WorkflowError):
    """
    The payload failed verification: wrong key, tampering, or expired claims.

    A security fault, never a transient one. Always aborts the invocation.
    """

    error_code = ErrorCode.AUTHENTICATION_ERROR
    default_status = 401


class MalformedEventError(WorkflowError):
    """The verified payload does not have the shape of a lifecycle event."""

    error_code = ErrorCode.VALIDATION_ERROR
    default_status = 400


class AuthError(WorkflowError):
    """The API key could not be exchanged for session tokens."""

    error_code = ErrorCode.AUTHENTICATION_ERROR


class DeploymentRejectedError(WorkflowError):
    """The ALB API did not accept the secret update."""

    error_code = ErrorCode.EXTERNAL_SERVICE_ERROR


class VerificationError(WorkflowError):
    """The secret update could not be confirmed as applied."""

    error_code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(
        self,
        message: str,
        outcome: DeploymentOutcome,
        status: int | None = None,
        state: str | None = None,
    ) -> None:
        super().__init__(message, status)
        self.outcome = outcome
        self.state = state


class NotificationDeliveryError(WorkflowError):
    """The Slack webhook did not accept the notification."""

    error_code = ErrorCode.EXTERNAL_SERVICE_ERROR


async def capture(awaitable: Awaitable[T]) -> Result[T]:
    """Await a step and move any WorkflowError it raises onto the failure track."""
    try:
        return Result.success(await awaitable)
    except WorkflowError as e:
        return e.to_result()
