"""Tests for the error taxonomy."""

from __future__ import annotations

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from builds_collector.errors import (
    ApiError,
    BudgetExceededError,
    ConfigurationError,
    ErrorType,
    ParseError,
    QuotaExceededError,
    RateLimitError,
    classify_error,
    is_fatal,
    is_rate_limit,
    is_retryable,
)


class TestClassifyError:
    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (RateLimitError("slow down"), ErrorType.RATE_LIMIT),
            (QuotaExceededError("empty"), ErrorType.QUOTA_EXCEEDED),
            (ConfigurationError("bad"), ErrorType.CONFIGURATION),
            (OperationalError("select 1", {}, Exception("gone")), ErrorType.DATABASE),
            (httpx.ConnectError("refused"), ErrorType.API),
            (KeyError("name"), ErrorType.PARSE),
            (TimeoutError(), ErrorType.TIMEOUT),
            (RuntimeError("boom"), ErrorType.UNKNOWN),
        ],
    )
    def test_mapping(self, exc, expected):
        assert classify_error(exc) == expected


class TestRetryability:
    def test_rate_limits_are_not_retried_in_place(self):
        assert not is_retryable(RateLimitError("slow down", retry_after=5))
        assert is_rate_limit(QuotaExceededError("empty"))

    def test_api_error_retryable_flag(self):
        assert is_retryable(ApiError("500", status_code=500, retryable=True))
        assert not is_retryable(ApiError("404", status_code=404, retryable=False))

    def test_parse_errors_are_final(self):
        assert not is_retryable(ParseError("bad shape"))

    def test_fatal_errors(self):
        assert is_fatal(ConfigurationError("no specs"))
        assert is_fatal(BudgetExceededError("over", required=10, remaining=1))
        assert not is_fatal(ApiError("500"))

    def test_to_dict(self):
        error = RateLimitError("slow down", retry_after=12.5)
        assert error.to_dict() == {
            "type": "rate_limit",
            "message": "slow down",
            "retryable": True,
            "retry_after": 12.5,
        }
