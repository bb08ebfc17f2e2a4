"""
Railway-Oriented Programming (ROP) toolkit.

Explicit, composable error handling — adapters return Result instead of
raising, and pipelines chain stages that short-circuit on the first failure.

    from railway import Result, ErrorCode

    key = await resolver.fetch_public_key(instance)
    event = key.flat_map(lambda k: verifier.verify(payload, k))
"""

from railway.result import Result, Success, Failure
from railway.failure import ErrorCode, FailureDescription
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
)
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]

__version__ = "1.1.0"
