"""Error taxonomy shared by activities, stages and the coordinator.

Activities raise (or get wrapped into) a :class:`PipelineError` subclass so
workflow code can branch on :attr:`PipelineError.error_type` alone.
"""

from __future__ import annotations

from enum import Enum

import httpx
import pydantic
from sqlalchemy.exc import SQLAlchemyError


class ErrorType(str, Enum):
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONFIGURATION = "configuration"
    API = "api"
    DATABASE = "database"
    PARSE = "parse"
    BUDGET = "budget"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_RATE_LIMIT_TYPES = {ErrorType.RATE_LIMIT, ErrorType.QUOTA_EXCEEDED}
_FATAL_TYPES = {ErrorType.CONFIGURATION, ErrorType.BUDGET}


class PipelineError(RuntimeError):
    error_type: ErrorType = ErrorType.UNKNOWN
    default_retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after

    @property
    def is_rate_limit(self) -> bool:
        return self.error_type in _RATE_LIMIT_TYPES

    @property
    def is_fatal(self) -> bool:
        return self.error_type in _FATAL_TYPES

    def to_dict(self) -> dict:
        return {
            "type": self.error_type.value,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
        }


class RateLimitError(PipelineError):
    """Upstream rejected the call; the stage should continue-as-new later."""

    error_type = ErrorType.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        remaining_points: float | None = None,
        reset_in: float | None = None,
    ) -> None:
        super().__init__(message, retry_after=retry_after)
        self.remaining_points = remaining_points
        self.reset_in = reset_in


class QuotaExceededError(RateLimitError):
    error_type = ErrorType.QUOTA_EXCEEDED


class ConfigurationError(PipelineError):
    error_type = ErrorType.CONFIGURATION
    default_retryable = False


class ApiError(PipelineError):
    error_type = ErrorType.API

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class DatabaseError(PipelineError):
    error_type = ErrorType.DATABASE


class ParseError(PipelineError):
    error_type = ErrorType.PARSE
    default_retryable = False


class PayloadError(ParseError):
    """A stored build payload could not be decoded."""


class BudgetExceededError(PipelineError):
    error_type = ErrorType.BUDGET
    default_retryable = False

    def __init__(self, message: str, *, required: float, remaining: float) -> None:
        super().__init__(message)
        self.required = required
        self.remaining = remaining


class ActivityTimeoutError(PipelineError):
    """An activity attempt exceeded its start-to-close or heartbeat timeout."""

    error_type = ErrorType.TIMEOUT

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message)
        self.kind = kind


class InvalidTransitionError(PipelineError):
    """A checkpoint status change would move a workflow state backwards."""

    error_type = ErrorType.DATABASE
    default_retryable = False


class ChildExecutionError(PipelineError):
    """Wraps the failure of a child execution as seen by its parent."""

    def __init__(self, message: str, *, child_id: str, error_type: ErrorType) -> None:
        super().__init__(message, retryable=False)
        self.child_id = child_id
        self.error_type = error_type


def classify_error(exc: BaseException) -> ErrorType:
    """Map any exception onto the coarse error taxonomy."""
    if isinstance(exc, PipelineError):
        return exc.error_type
    if isinstance(exc, SQLAlchemyError):
        return ErrorType.DATABASE
    if isinstance(exc, (pydantic.ValidationError, ValueError, KeyError, TypeError)):
        return ErrorType.PARSE
    if isinstance(exc, httpx.TransportError):
        return ErrorType.API
    if isinstance(exc, TimeoutError):
        return ErrorType.TIMEOUT
    return ErrorType.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Whether an activity attempt that raised ``exc`` may be retried in place.

    Rate limits are excluded: they are handled by continuing the execution.
    """
    if isinstance(exc, PipelineError):
        return exc.retryable and not exc.is_rate_limit
    return classify_error(exc) in {
        ErrorType.DATABASE,
        ErrorType.API,
        ErrorType.TIMEOUT,
        ErrorType.UNKNOWN,
    }


def is_rate_limit(exc: BaseException) -> bool:
    return classify_error(exc) in _RATE_LIMIT_TYPES


def is_fatal(exc: BaseException) -> bool:
    return classify_error(exc) in _FATAL_TYPES
