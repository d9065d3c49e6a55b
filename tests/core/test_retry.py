"""Tests for retry utilities."""

from unittest.mock import AsyncMock, Mock

import pytest

from captain_dispatch.core.exceptions import NetworkError, ValidationError
from captain_dispatch.core.retry import RetryConfig, with_retry, with_retry_sync


@pytest.mark.unit
@pytest.mark.critical
class TestRetryConfig:
    def test_default_config(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 0.5
        assert config.multiplier == 2.0

    def test_delay_doubles_until_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0)
        assert [config.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_exhausted(self):
        config = RetryConfig(max_attempts=2)
        assert not config.exhausted(1)
        assert config.exhausted(2)


@pytest.mark.unit
class TestWithRetryAsync:
    @pytest.mark.asyncio
    async def test_succeeds_on_first_attempt(self):
        operation = AsyncMock(return_value="success")

        result = await with_retry(operation)

        assert result == "success"
        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        operation = AsyncMock(side_effect=[NetworkError("down"), "success"])
        on_retry = Mock()

        result = await with_retry(operation, RetryConfig(base_delay=0.001), on_retry=on_retry)

        assert result == "success"
        assert operation.call_count == 2
        on_retry.assert_called_once()

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        operation = AsyncMock(side_effect=ValidationError("bad input"))

        with pytest.raises(ValidationError):
            await with_retry(operation, RetryConfig(base_delay=0.001))

        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self):
        operation = AsyncMock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            await with_retry(operation, RetryConfig(max_attempts=3, base_delay=0.001))

        assert operation.call_count == 3

    @pytest.mark.asyncio
    async def test_async_sleeps_follow_config_backoff(self):
        operation = AsyncMock(side_effect=[NetworkError("a"), NetworkError("b"), "ok"])
        sleep = AsyncMock()
        on_retry = Mock()

        result = await with_retry(
            operation, RetryConfig(base_delay=1.0, max_delay=1.5), on_retry=on_retry, sleep=sleep
        )

        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 1.5]
        assert [c.args[1] for c in on_retry.call_args_list] == [0, 1]


@pytest.mark.unit
class TestWithRetrySync:
    def test_sleeps_with_backoff_between_attempts(self):
        operation = Mock(side_effect=[NetworkError("a"), NetworkError("b"), "ok"])
        sleep = Mock()

        result = with_retry_sync(operation, RetryConfig(base_delay=0.5), sleep=sleep)

        assert result == "ok"
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_gives_up(self):
        operation = Mock(side_effect=NetworkError("down"))

        with pytest.raises(NetworkError):
            with_retry_sync(operation, RetryConfig(max_attempts=2), sleep=Mock())

        assert operation.call_count == 2
