from __future__ import annotations

import asyncio

import pytest

from xchain_api.exceptions import RetryExhaustedError, TerminalOperationError
from xchain_api.retry import RetryPolicy, RetryWrapper


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyOperation:
    def __init__(self, failures: list[BaseException], value: str = "ok") -> None:
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


async def test_transient_failures_retry_until_success() -> None:
    sleep = RecordingSleep()
    wrapper = RetryWrapper(RetryPolicy(max_attempts=3, backoff=0.5), sleep=sleep)
    operation = FlakyOperation([ConnectionError("reset"), TimeoutError("slow")])

    outcome = await wrapper.run(operation, action="transfer")

    assert outcome.value == "ok"
    assert outcome.attempts == 3
    assert operation.calls == 3
    assert sleep.delays == [0.5, 1.0]


async def test_terminal_failure_is_not_retried() -> None:
    sleep = RecordingSleep()
    wrapper = RetryWrapper(sleep=sleep)
    operation = FlakyOperation([ValueError("insufficient funds for transfer")])

    with pytest.raises(TerminalOperationError) as exc_info:
        await wrapper.run(operation, action="transfer")

    assert operation.calls == 1
    assert sleep.delays == []
    assert exc_info.value.details["attempts"] == 1
    assert isinstance(exc_info.value.__cause__, ValueError)


async def test_exhaustion_raises_after_max_attempts() -> None:
    wrapper = RetryWrapper(RetryPolicy(max_attempts=2, backoff=0), sleep=RecordingSleep())
    operation = FlakyOperation([ConnectionError("a"), ConnectionError("b"), ConnectionError("c")])

    with pytest.raises(RetryExhaustedError) as exc_info:
        await wrapper.run(operation, action="transfer")

    assert operation.calls == 2
    assert exc_info.value.attempts == 2


async def test_cancellation_propagates() -> None:
    wrapper = RetryWrapper(sleep=RecordingSleep())
    operation = FlakyOperation([asyncio.CancelledError()])

    with pytest.raises(asyncio.CancelledError):
        await wrapper.run(operation)
    assert operation.calls == 1


def test_policy_validation() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(backoff=-1)
    assert RetryPolicy(backoff=2.0).delay_for(3) == 6.0
