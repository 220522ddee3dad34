"""Tests for retry policy and executor."""

import asyncio

import pytest

from spindle.core.errors import Cancelled, ConfigError
from spindle.execution.cancellation import CancellationToken
from spindle.execution.retry import RetryExecutor, RetryPolicy, with_retry


class Flaky:
    """Operation that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: type[Exception] = ConnectionError, result: str = "ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.result


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    """Tests for RetryPolicy configuration and delay schedule."""

    def test_default_configuration(self):
        """Test default configuration values."""
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay == 1.0
        assert policy.backoff is True
        assert policy.backoff_multiplier == 2.0
        assert policy.max_delay is None

    def test_exponential_delays(self):
        """Test delays grow by the multiplier after every failure."""
        policy = RetryPolicy(max_attempts=4, delay=0.5, backoff_multiplier=2.0)
        assert list(policy.delays()) == [0.5, 1.0, 2.0]

    def test_constant_delays_without_backoff(self):
        policy = RetryPolicy(max_attempts=4, delay=0.25, backoff=False)
        assert list(policy.delays()) == [0.25, 0.25, 0.25]

    def test_max_delay_caps_growth(self):
        """Test max_delay caps every delay."""
        policy = RetryPolicy(max_attempts=5, delay=1.0, backoff_multiplier=10.0, max_delay=5.0)
        assert list(policy.delays()) == [1.0, 5.0, 5.0, 5.0]

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(delay=10.0, backoff=False, jitter=0.1)
        for _ in range(50):
            assert 9.0 <= policy.delay_for(0) <= 11.0

    def test_single_attempt_has_no_delays(self):
        assert list(RetryPolicy.no_retry().delays()) == []

    def test_policy_is_immutable(self):
        policy = RetryPolicy()
        with pytest.raises(AttributeError):
            policy.delay = 5.0  # type: ignore[misc]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"delay": -1.0},
            {"backoff_multiplier": 0.5},
            {"max_delay": -1.0},
            {"jitter": 1.5},
            {"retry_on": ()},
        ],
    )
    def test_invalid_configuration_rejected(self, kwargs):
        """Test invalid values raise ConfigError at construction."""
        with pytest.raises(ConfigError):
            RetryPolicy(**kwargs)

    def test_retry_on_filters_errors(self):
        policy = RetryPolicy(retry_on=(ConnectionError,))
        assert policy.is_retryable(ConnectionError()) is True
        assert policy.is_retryable(ValueError()) is False


class TestRetryExecutor:
    """Tests for RetryExecutor.execute."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        """Test no retry when the first attempt succeeds."""
        op = Flaky(failures=0)
        sleep = RecordingSleep()
        result = await RetryExecutor(RetryPolicy(delay=0), sleep=sleep).execute(op)
        assert result == "ok"
        assert op.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        """Test fail, fail, succeed returns the value after exactly three calls."""
        op = Flaky(failures=2, result="v")
        result = await RetryExecutor(RetryPolicy(max_attempts=3, delay=0)).execute(op)
        assert result == "v"
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        """Test the final attempt's own error propagates unchanged."""
        op = Flaky(failures=10, error=ConnectionError)
        with pytest.raises(ConnectionError, match="failure 3"):
            await RetryExecutor(RetryPolicy(max_attempts=3, delay=0)).execute(op)
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_three_attempts_without_backoff(self):
        """Test fail-fail-succeed and always-fail counts with backoff off."""
        policy = RetryPolicy(max_attempts=3, delay=0, backoff=False)

        recovering = Flaky(failures=2, result="v")
        assert await RetryExecutor(policy).execute(recovering) == "v"
        assert recovering.calls == 3

        broken = Flaky(failures=100, error=TimeoutError)
        with pytest.raises(TimeoutError, match="failure 3"):
            await RetryExecutor(policy).execute(broken)
        assert broken.calls == 3

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self):
        op = Flaky(failures=1)
        with pytest.raises(ConnectionError):
            await RetryExecutor(RetryPolicy.no_retry()).execute(op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        op = Flaky(failures=5, error=ValueError)
        policy = RetryPolicy(max_attempts=5, delay=0, retry_on=(ConnectionError,))
        with pytest.raises(ValueError):
            await RetryExecutor(policy).execute(op)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_waits_follow_policy_schedule(self):
        """Test the executor sleeps exactly the policy's delays."""
        sleep = RecordingSleep()
        policy = RetryPolicy(max_attempts=4, delay=0.1, backoff_multiplier=3.0)
        with pytest.raises(ConnectionError):
            await RetryExecutor(policy, sleep=sleep).execute(Flaky(failures=10))
        assert sleep.delays == pytest.approx([0.1, 0.3, 0.9])

    @pytest.mark.asyncio
    async def test_policy_not_mutated_between_runs(self):
        """Test a shared executor starts every run from the base delay."""
        sleep = RecordingSleep()
        executor = RetryExecutor(RetryPolicy(max_attempts=3, delay=1.0), sleep=sleep)
        await executor.execute(Flaky(failures=2))
        await executor.execute(Flaky(failures=2))
        assert sleep.delays == [1.0, 2.0, 1.0, 2.0]
        assert executor.policy.delay == 1.0

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        calls = []
        executor = RetryExecutor(
            RetryPolicy(max_attempts=3, delay=0),
            on_retry=lambda attempt, error, delay: calls.append((attempt, type(error), delay)),
        )
        await executor.execute(Flaky(failures=2))
        assert calls == [(1, ConnectionError, 0.0), (2, ConnectionError, 0.0)]

    @pytest.mark.asyncio
    async def test_sync_operation_supported(self):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 2:
                raise ConnectionError("once")
            return 42

        assert await RetryExecutor(RetryPolicy(delay=0)).execute(op) == 42
        assert len(calls) == 2


class TestRetryCancellation:
    """Tests for token-driven cancellation of retries."""

    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self):
        token = CancellationToken()
        token.cancel("shutdown")
        op = Flaky(failures=0)
        with pytest.raises(Cancelled):
            await RetryExecutor(RetryPolicy(delay=0)).execute(op, token=token)
        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_wait_stops_retries(self):
        """Test cancelling mid-wait aborts without another attempt."""
        token = CancellationToken()
        op = Flaky(failures=10)
        executor = RetryExecutor(RetryPolicy(max_attempts=5, delay=30.0))

        task = asyncio.ensure_future(executor.execute(op, token=token))
        await asyncio.sleep(0.05)
        token.cancel("user abort")

        with pytest.raises(Cancelled) as exc_info:
            await asyncio.wait_for(task, timeout=2.0)
        assert op.calls == 1
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_cancel_from_sleep_hook_keeps_cause(self):
        """Test a token fired while sleeping stops before the next attempt with the last error chained."""
        token = CancellationToken()
        op = Flaky(failures=10)

        async def cancelling_sleep(delay: float) -> None:
            token.cancel("stop")

        executor = RetryExecutor(RetryPolicy(max_attempts=5, delay=0.01), sleep=cancelling_sleep)
        with pytest.raises(Cancelled) as exc_info:
            await executor.execute(op, token=token)
        assert op.calls == 1
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert "stop" in str(exc_info.value)


class TestWithRetryDecorator:
    """Tests for the with_retry decorator."""

    @pytest.mark.asyncio
    async def test_decorated_function_retries(self):
        calls = []

        @with_retry(RetryPolicy(max_attempts=3, delay=0))
        async def fetch(symbol):
            calls.append(symbol)
            if len(calls) < 3:
                raise TimeoutError("slow")
            return symbol.lower()

        assert await fetch("ETH") == "eth"
        assert calls == ["ETH", "ETH", "ETH"]

    def test_preserves_metadata(self):
        @with_retry(RetryPolicy(delay=0))
        async def load_balance():
            """Load a balance."""

        assert load_balance.__name__ == "load_balance"
        assert load_balance.__doc__ == "Load a balance."

    def test_rejects_sync_function(self):
        with pytest.raises(TypeError):

            @with_retry()
            def not_async():
                return 1
