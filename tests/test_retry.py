"""Tests for retry utilities"""
import pytest
from unittest.mock import AsyncMock, patch

from eventsnaps.retry import (
    APIError, NetworkError, RateLimitError, UpstreamError, convert_http_error, exponential_backoff
)


class TestConvertHttpError:
    """Tests for status code mapping"""

    def test_mapping(self):
        assert isinstance(convert_http_error(429, "slow down"), RateLimitError)
        assert isinstance(convert_http_error(503, "unavailable"), NetworkError)
        assert isinstance(convert_http_error(408, "timeout"), NetworkError)
        assert isinstance(convert_http_error(500, "boom"), APIError)
        error = convert_http_error(404, "missing")
        assert isinstance(error, UpstreamError)
        assert error.status_code == 404


class TestExponentialBackoff:
    """Tests for the retry decorator"""

    async def test_retries_then_succeeds(self):
        calls = []

        @exponential_backoff(max_retries=2, base_delay=0.01, jitter=False)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise APIError("boom", 500)
            return "ok"

        with patch("eventsnaps.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await flaky() == "ok"
        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.01, 0.02]

    async def test_gives_up(self):
        @exponential_backoff(max_retries=1, base_delay=0.01)
        async def always_down():
            raise NetworkError("down")

        with patch("eventsnaps.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(NetworkError):
                await always_down()

    async def test_non_retryable_raises_immediately(self):
        calls = []

        @exponential_backoff(max_retries=3)
        async def bad_request():
            calls.append(1)
            raise UpstreamError("bad", 400)

        with pytest.raises(UpstreamError):
            await bad_request()
        assert len(calls) == 1

    async def test_rate_limit_waits_longer(self):
        calls = []

        @exponential_backoff(max_retries=1, base_delay=0.01, max_delay=60.0, jitter=False)
        async def limited():
            calls.append(1)
            if len(calls) == 1:
                raise RateLimitError("429", 429)
            return "ok"

        with patch("eventsnaps.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await limited() == "ok"
        assert sleep.await_args_list[0].args[0] == 30.0
