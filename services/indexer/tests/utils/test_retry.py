"""Tests for RetryPolicy."""

import asyncio
import threading

import pytest

from services.indexer.src.indexer.errors import ConfigurationError, RemoteReadError, RetryExhaustedError
from services.indexer.src.indexer.utils.retry import RetryPolicy

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0)


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value="ok", error: Exception | None = None):
        self.failures = failures
        self.value = value
        self.error = error or RemoteReadError("boom")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value

    async def run(self):
        return self()


class TestRun:

    def test_returns_first_success(self):
        flaky = Flaky(failures=0)

        assert asyncio.run(NO_WAIT.run(flaky.run)) == "ok"
        assert flaky.calls == 1

    def test_retries_until_success(self):
        flaky = Flaky(failures=2)

        assert asyncio.run(NO_WAIT.run(flaky.run)) == "ok"
        assert flaky.calls == 3

    def test_raises_after_max_attempts(self):
        flaky = Flaky(failures=5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            asyncio.run(NO_WAIT.run(flaky.run))

        assert flaky.calls == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, RemoteReadError)

    def test_configuration_errors_are_not_retried(self):
        flaky = Flaky(failures=5, error=ConfigurationError("no deployment"))

        with pytest.raises(ConfigurationError):
            asyncio.run(NO_WAIT.run(flaky.run))

        assert flaky.calls == 1

    def test_timeout_counts_as_failure(self):
        async def slow():
            await asyncio.sleep(1)

        policy = NO_WAIT.with_options(max_attempts=2, timeout=0.01)

        with pytest.raises(RetryExhaustedError):
            asyncio.run(policy.run(slow))

    def test_passes_arguments(self):
        async def add(a, b=0):
            return a + b

        assert asyncio.run(NO_WAIT.run(add, 1, b=2)) == 3


class TestRunInThread:

    def test_retries_blocking_function(self):
        flaky = Flaky(failures=1)

        assert asyncio.run(NO_WAIT.run_in_thread(flaky)) == "ok"
        assert flaky.calls == 2

    def test_custom_retryable_predicate(self):
        flaky = Flaky(failures=1, error=ValueError("bad"))
        policy = NO_WAIT.with_options(retryable=lambda e: not isinstance(e, ValueError))

        with pytest.raises(ValueError):
            asyncio.run(policy.run_in_thread(flaky))

        assert flaky.calls == 1

    def test_does_not_block_the_event_loop(self):
        released = threading.Event()

        async def release():
            released.set()

        async def main():
            waited, _ = await asyncio.gather(
                NO_WAIT.run_in_thread(released.wait, 5), release()
            )
            return waited

        assert asyncio.run(main()) is True


class TestDelayFor:

    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay=1.0, backoff=2.0, max_delay=100.0)

        assert [policy.delay_for(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_capped_by_max_delay(self):
        policy = RetryPolicy(base_delay=1.0, backoff=10.0, max_delay=5.0)

        assert policy.delay_for(3) == 5.0

    def test_jitter_stays_within_bound(self):
        policy = RetryPolicy(base_delay=1.0, jitter=0.5)

        for _ in range(20):
            assert 1.0 <= policy.delay_for(1) <= 1.5
