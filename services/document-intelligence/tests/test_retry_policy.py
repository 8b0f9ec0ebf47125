"""Tests for the shared retry/backoff policy."""

import asyncio
import sys
from pathlib import Path

import httpx
import pytest
from botocore.exceptions import ClientError

sys.path.insert(0, str(Path(__file__).parent.parent))

from retry_policy import RateLimited, RetryExhausted, is_rate_limited, raise_for_status, with_retry


class Recorder:
    """Records backoff delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def flaky(failures: int, exc: Exception, result="ok"):
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise exc
        return result

    return operation, calls


class TestWithRetry:
    def test_success_first_attempt_never_sleeps(self):
        sleep = Recorder()
        operation, calls = flaky(0, RateLimited("429"))

        result = asyncio.run(with_retry(operation, name="op", max_attempts=3, base_delay=1.0, sleep=sleep))

        assert result == "ok"
        assert calls["count"] == 1
        assert sleep.delays == []

    def test_rate_limited_then_succeeds(self):
        sleep = Recorder()
        operation, calls = flaky(2, RateLimited("429"))

        result = asyncio.run(with_retry(operation, name="op", max_attempts=3, base_delay=1.0, sleep=sleep))

        assert result == "ok"
        assert calls["count"] == 3
        assert sleep.delays == [1.0, 2.0]

    def test_exhausted_raises_with_last_error(self):
        sleep = Recorder()
        error = RateLimited("slow down")
        operation, calls = flaky(10, error)

        with pytest.raises(RetryExhausted) as exc_info:
            asyncio.run(with_retry(operation, name="google-vision", max_attempts=3, base_delay=1.0, sleep=sleep))

        assert calls["count"] == 3
        assert sleep.delays == [1.0, 2.0]
        assert exc_info.value.operation == "google-vision"
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is error
        assert exc_info.value.__cause__ is error

    def test_delays_scale_with_base_delay(self):
        sleep = Recorder()
        operation, _ = flaky(10, RateLimited("429"))

        with pytest.raises(RetryExhausted):
            asyncio.run(with_retry(operation, name="op", max_attempts=4, base_delay=0.5, sleep=sleep))

        assert sleep.delays == [0.5, 1.0, 2.0]

    def test_non_retryable_propagates_immediately(self):
        sleep = Recorder()
        operation, calls = flaky(10, ValueError("bad document"))

        with pytest.raises(ValueError, match="bad document"):
            asyncio.run(with_retry(operation, name="op", max_attempts=3, sleep=sleep))

        assert calls["count"] == 1
        assert sleep.delays == []

    def test_custom_predicate(self):
        sleep = Recorder()
        operation, calls = flaky(1, ConnectionError("reset"))

        result = asyncio.run(
            with_retry(
                operation,
                name="op",
                max_attempts=3,
                is_retryable=lambda e: isinstance(e, ConnectionError),
                base_delay=1.0,
                sleep=sleep,
            )
        )

        assert result == "ok"
        assert calls["count"] == 2

    def test_cancellation_stops_backoff(self):
        operation, calls = flaky(10, RateLimited("429"))

        async def run():
            task = asyncio.create_task(with_retry(operation, name="op", max_attempts=3, base_delay=30.0))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert calls["count"] == 1

    def test_sync_callable_returning_awaitable_is_awaited(self):
        result = asyncio.run(with_retry(lambda: asyncio.to_thread(lambda: "done"), name="op"))

        assert result == "done"

    def test_thread_call_rate_limited_then_succeeds(self):
        sleep = Recorder()
        calls = {"count": 0}

        def blocking_request():
            calls["count"] += 1
            if calls["count"] == 1:
                raise RateLimited("429")
            return {"status": "ok"}

        result = asyncio.run(
            with_retry(lambda: asyncio.to_thread(blocking_request), name="op", base_delay=1.0, sleep=sleep)
        )

        assert result == {"status": "ok"}
        assert calls["count"] == 2
        assert sleep.delays == [1.0]


class TestIsRateLimited:
    def test_rate_limited(self):
        assert is_rate_limited(RateLimited("429"))

    def test_status_code_attribute(self):
        class SDKError(Exception):
            status_code = 429

        assert is_rate_limited(SDKError())

    def test_httpx_status_error(self):
        request = httpx.Request("POST", "https://example.test")
        response = httpx.Response(429, request=request)
        exc = httpx.HTTPStatusError("too many", request=request, response=response)
        assert is_rate_limited(exc)

    def test_httpx_server_error_not_rate_limited(self):
        request = httpx.Request("POST", "https://example.test")
        response = httpx.Response(500, request=request)
        exc = httpx.HTTPStatusError("boom", request=request, response=response)
        assert not is_rate_limited(exc)

    def test_botocore_throttling(self):
        exc = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow"}}, "AnalyzeDocument")
        assert is_rate_limited(exc)

    def test_botocore_other_error(self):
        exc = ClientError({"Error": {"Code": "InvalidParameterException", "Message": "bad"}}, "AnalyzeDocument")
        assert not is_rate_limited(exc)

    def test_plain_error(self):
        assert not is_rate_limited(RuntimeError("nope"))


class TestRaiseForStatus:
    def test_429_raises_rate_limited(self):
        with pytest.raises(RateLimited):
            raise_for_status(httpx.Response(429), "svc", RuntimeError)

    def test_error_status_raises_given_class(self):
        with pytest.raises(RuntimeError, match="HTTP 503"):
            raise_for_status(httpx.Response(503, text="unavailable"), "svc", RuntimeError)

    def test_success_passes(self):
        raise_for_status(httpx.Response(202), "svc", RuntimeError)
