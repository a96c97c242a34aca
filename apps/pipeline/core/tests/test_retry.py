"""Tests for the retry policy and transient-error classification."""

import asyncio

import httpx
import openai
import pytest

from apps.pipeline.core.retry import RetryPolicy, is_transient_error, retry_async, retrying
from packages.ingestion_engine.errors import (
    ConfigurationError,
    RetryExhaustedError,
    TransientError,
    ValidationError,
)

REQUEST = httpx.Request("GET", "https://rates.example.com/v4/latest/GBP")


def status_error(code):
    response = httpx.Response(code, request=REQUEST)
    return httpx.HTTPStatusError(f"HTTP {code}", request=REQUEST, response=response)


class Flaky:
    """Fails ``failures`` times with ``error`` then returns ``value``."""

    def __init__(self, failures, error, value="ok"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class TestPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=5, initial_delay=1.0, backoff_multiplier=2.0, max_delay=32.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(initial_delay=10.0, backoff_multiplier=3.0, max_delay=25.0)
        assert policy.delay_for(3) == 25.0


class TestClassification:
    @pytest.mark.parametrize(
        "error",
        [
            TransientError("rate provider returned 503", status_code=503),
            httpx.ConnectError("connection refused", request=REQUEST),
            httpx.ReadTimeout("read timed out", request=REQUEST),
            asyncio.TimeoutError(),
            status_error(429),
            status_error(502),
            openai.APIConnectionError(request=REQUEST),
            OSError("ECONNRESET by peer"),
            RuntimeError("network unreachable"),
        ],
    )
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError("OPENAI_API_KEY is not set"),
            ValidationError("bad amount"),
            status_error(400),
            status_error(401),
            ValueError("could not parse JSON"),
        ],
    )
    def test_not_transient(self, error):
        assert not is_transient_error(error)


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self, no_sleep):
        fn = Flaky(2, TransientError("HTTP 503"))

        result = await retry_async(fn, RetryPolicy(max_attempts=3), sleep=no_sleep)

        assert result == "ok"
        assert fn.calls == 3
        assert no_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_cause(self, no_sleep):
        error = TransientError("network unreachable")
        fn = Flaky(10, error)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_async(fn, RetryPolicy(max_attempts=3), operation="fetch_rates", sleep=no_sleep)

        assert fn.calls == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is error
        assert exc_info.value.__cause__ is error
        assert "fetch_rates failed after 3 attempts" in str(exc_info.value)
        # no sleep after the final attempt
        assert len(no_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_transient_error_is_not_retried(self, no_sleep):
        fn = Flaky(1, ConfigurationError("bad key"))

        with pytest.raises(ConfigurationError):
            await retry_async(fn, RetryPolicy(max_attempts=5), sleep=no_sleep)

        assert fn.calls == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_message_is_redacted(self, no_sleep):
        fn = Flaky(3, TransientError("timeout calling https://x?api_key=secret123"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_async(fn, RetryPolicy(max_attempts=3), sleep=no_sleep)

        assert "secret123" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_retrying_wrapper(self, no_sleep):
        wrapper = retrying(RetryPolicy(max_attempts=2, initial_delay=0.5), "categorize_batch", no_sleep)
        fn = Flaky(1, httpx.ConnectError("refused", request=REQUEST), value=[1, 2])

        assert await wrapper(fn) == [1, 2]
        assert no_sleep.delays == [0.5]
