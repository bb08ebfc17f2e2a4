"""
Execution contexts — separate WHAT (pure logic) from HOW (side effects).

A pipeline describes what should happen and returns Result[T]; an execution
context decides how it runs: logging, timing, catching stray exceptions.
Contexts are async because the pipelines they wrap are awaitable.

Usage:
    ctx = LoggingExecutionContext(operation="CertificateDeployment")
    result = await ctx.execute(lambda: workflow.run(payload))
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Protocol, TypeVar, runtime_checkable

import structlog

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger("railway.execution")


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything that can run an awaitable Result-returning computation."""

    async def execute(self, computation: Callable[[], Awaitable[Result[T]]]) -> Result[T]: ...


class NoOpExecutionContext:
    """
    Passthrough execution context — awaits the computation without any wrapper.

    Use for unit tests and for code that needs no observability.
    """

    async def execute(self, computation: Callable[[], Awaitable[Result[T]]]) -> Result[T]:
        return await computation()


class LoggingExecutionContext:
    """
    Execution context that logs entry, exit, duration, and result state.

    Wraps another context (decorator pattern). Unexpected exceptions are
    logged and turned into a TECHNICAL_ERROR failure so a single invocation
    never crashes its host.

        ctx = LoggingExecutionContext(operation="CertificateDeployment")
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation

    async def execute(self, computation: Callable[[], Awaitable[Result[T]]]) -> Result[T]:
        log.info("execution.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = await self._inner.execute(computation)
        except Exception as e:
            log.exception(
                "execution.crashed",
                operation=self._operation,
                elapsed_seconds=round(time.monotonic() - start, 3),
            )
            return Failure(
                FailureDescription(
                    ErrorCode.TECHNICAL_ERROR,
                    "Error processing your request.",
                    e,
                )
            )

        elapsed = round(time.monotonic() - start, 3)
        if result.is_success():
            log.info("execution.completed", operation=self._operation, elapsed_seconds=elapsed, state="SUCCESS")
        else:
            log.warning(
                "execution.completed",
                operation=self._operation,
                elapsed_seconds=elapsed,
                state="FAILURE",
                error_code=result.error().code.value,
            )
        return result
