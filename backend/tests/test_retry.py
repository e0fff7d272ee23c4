import asyncio

import pytest

from watermark_studio.core.errors import ProviderAuthError, ProviderError
from watermark_studio.services.retry import RetryPolicy, retry_with_backoff, run_with_policy


class Recorder:
    def __init__(self):
        self.delays = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_always_failing_operation_makes_max_retries_plus_one_attempts():
    recorder = Recorder()
    calls = []

    async def op():
        calls.append(1)
        raise ProviderError("boom")

    with pytest.raises(ProviderError, match="boom"):
        asyncio.run(retry_with_backoff(op, max_retries=3, delay=2.0, multiplier=2.0, sleep=recorder.sleep))
    assert len(calls) == 4
    assert recorder.delays == [2.0, 4.0, 8.0]


def test_last_exception_is_propagated_unchanged():
    recorder = Recorder()
    errors = [ProviderError(f"attempt {i}") for i in range(3)]

    async def op():
        raise errors.pop(0)

    with pytest.raises(ProviderError) as info:
        asyncio.run(retry_with_backoff(op, max_retries=2, delay=1.0, multiplier=3.0, sleep=recorder.sleep))
    assert str(info.value) == "attempt 2"
    assert recorder.delays == [1.0, 3.0]


def test_success_on_later_attempt_returns_value():
    recorder = Recorder()
    attempts = {"n": 0}

    async def op():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise RuntimeError("flaky")
        return "ok"

    assert asyncio.run(retry_with_backoff(op, max_retries=3, delay=0.5, sleep=recorder.sleep)) == "ok"
    assert attempts["n"] == 3
    assert recorder.delays == [0.5, 1.0]


def test_non_retryable_error_stops_immediately_with_classification():
    recorder = Recorder()
    calls = []

    async def op():
        calls.append(1)
        raise ProviderAuthError("Invalid API key")

    with pytest.raises(ProviderAuthError):
        asyncio.run(run_with_policy(op, RetryPolicy(max_retries=3, delay=1.0), sleep=recorder.sleep))
    assert len(calls) == 1
    assert recorder.delays == []


def test_classification_disabled_retries_every_failure():
    recorder = Recorder()
    calls = []

    async def op():
        calls.append(1)
        raise ProviderAuthError("Invalid API key")

    policy = RetryPolicy(max_retries=2, delay=1.0, multiplier=2.0, classify_errors=False)
    with pytest.raises(ProviderAuthError):
        asyncio.run(run_with_policy(op, policy, sleep=recorder.sleep))
    assert len(calls) == 3
    assert recorder.delays == policy.delays() == [1.0, 2.0]


def test_zero_retries_runs_once():
    recorder = Recorder()

    async def op():
        raise ProviderError("nope")

    with pytest.raises(ProviderError):
        asyncio.run(retry_with_backoff(op, max_retries=0, sleep=recorder.sleep))
    assert recorder.delays == []
