"""Failure classification is deterministic, total and structural-first."""

import pytest

from models.errors import AllProvidersFailedError, GeneratorError
from models.schemas import FailureKind
from utils.failures import classify


class StatusError(Exception):
    def __init__(self, message="", status=None, code=None, retry_after=None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.retry_after = retry_after


@pytest.mark.parametrize("error, kind, retryable", [
    (StatusError(status=429), FailureKind.RATE_LIMIT, True),
    (StatusError("You exceeded your current quota", status=429), FailureKind.QUOTA_EXCEEDED, False),
    (StatusError(status=429, code="insufficient_quota"), FailureKind.QUOTA_EXCEEDED, False),
    (StatusError(status=401), FailureKind.AUTH_ERROR, False),
    (StatusError(status=403), FailureKind.AUTH_ERROR, False),
    (StatusError(status=408), FailureKind.TIMEOUT, True),
    (StatusError(status=503), FailureKind.UNKNOWN, True),
    (StatusError(code="ETIMEDOUT"), FailureKind.TIMEOUT, True),
    (StatusError(code="ECONNRESET"), FailureKind.NETWORK_ERROR, True),
    (StatusError(code="ENOTFOUND"), FailureKind.NETWORK_ERROR, True),
    (StatusError(code="insufficient_quota"), FailureKind.QUOTA_EXCEEDED, False),
    (TimeoutError(), FailureKind.TIMEOUT, True),
    (ConnectionRefusedError(), FailureKind.NETWORK_ERROR, True),
    (RuntimeError("Rate limit reached for requests"), FailureKind.RATE_LIMIT, True),
    (RuntimeError("Request timed out"), FailureKind.TIMEOUT, True),
    (RuntimeError("401 Unauthorized"), FailureKind.AUTH_ERROR, False),
    (RuntimeError("Invalid API key provided"), FailureKind.AUTH_ERROR, False),
    (RuntimeError("network unreachable"), FailureKind.NETWORK_ERROR, True),
    (RuntimeError("monthly quota used up"), FailureKind.QUOTA_EXCEEDED, False),
    (RuntimeError("something odd"), FailureKind.UNKNOWN, False),
    (ValueError(), FailureKind.UNKNOWN, False),
])
def test_classification_table(error, kind, retryable):
    record = classify(error)
    assert record.kind is kind
    assert record.retryable is retryable
    assert record.suggestions


class TestRateLimit:

    def test_default_retry_after_is_60_seconds(self):
        assert classify(StatusError(status=429)).retry_after_seconds == 60

    def test_retry_after_from_error(self):
        assert classify(StatusError(status=429, retry_after=12)).retry_after_seconds == 12

    def test_message_rate_limit_also_carries_retry_after(self):
        assert classify(RuntimeError("rate limit")).retry_after_seconds == 60


class TestStructuralFirst:

    def test_explicit_kind_wins_over_message(self):
        """
        GIVEN an error whose message mentions a timeout but whose adapter set kind=auth_error
        WHEN classified
        THEN the explicit kind is used
        """
        error = GeneratorError("timeout talking to provider", kind=FailureKind.AUTH_ERROR)
        assert classify(error).kind is FailureKind.AUTH_ERROR

    def test_status_wins_over_message(self):
        assert classify(StatusError("network hiccup", status=401)).kind is FailureKind.AUTH_ERROR

    def test_string_kind_is_accepted(self):
        error = RuntimeError("x")
        error.failure_kind = "timeout"
        assert classify(error).kind is FailureKind.TIMEOUT

    def test_no_configured_provider_is_an_auth_error(self):
        record = classify(AllProvidersFailedError([]))
        assert record.kind is FailureKind.AUTH_ERROR
        assert not record.retryable

    def test_all_providers_failed_inherits_last_status(self):
        last = GeneratorError("slow down", status=429, provider="xai")
        record = classify(AllProvidersFailedError(["openai", "xai"], last))
        assert record.kind is FailureKind.RATE_LIMIT


class TestTotality:

    @pytest.mark.parametrize("value", [None, "", "plain string timeout", 42, object()])
    def test_never_raises(self, value):
        assert classify(value).kind in set(FailureKind)

    def test_deterministic(self):
        error = StatusError("boom", status=429, retry_after=5)
        assert classify(error) == classify(error)

    def test_broken_error_object_is_unknown(self):
        class Hostile(Exception):
            @property
            def status(self):
                raise RuntimeError("no")

        assert classify(Hostile()).kind is FailureKind.UNKNOWN
