"""Bounded retry wrapper for state-changing operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from .classify import classify_error, is_transient
from .exceptions import RetryExhaustedError, XChainError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF = 1.0

Classifier = Callable[[BaseException], XChainError]


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound and linear backoff (``backoff * attempt`` seconds)."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: float = DEFAULT_BACKOFF

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff < 0:
            raise ValueError("backoff must be non-negative")

    def delay_for(self, attempt: int) -> float:
        return self.backoff * attempt


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    value: T
    attempts: int


class RetryWrapper:
    """Run an operation until it succeeds, fails terminally, or runs out of attempts.

    The operation is a zero-argument coroutine factory so every attempt
    rebuilds its request from scratch (fresh nonce, fresh blockhash).
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        classifier: Classifier = classify_error,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._classify = classifier
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        action: str = "operation",
    ) -> RetryOutcome[T]:
        max_attempts = self.policy.max_attempts
        last_error: XChainError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                value = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = self._classify(exc)
                error.details.setdefault("attempts", attempt)
                if not is_transient(error):
                    logger.info("%s failed terminally on attempt %d: %s", action, attempt, error)
                    if error is exc:
                        raise
                    raise error from exc

                last_error = error
                if attempt < max_attempts:
                    delay = self.policy.delay_for(attempt)
                    logger.warning(
                        "%s attempt %d/%d failed (%s); retrying in %.2fs",
                        action,
                        attempt,
                        max_attempts,
                        error,
                        delay,
                    )
                    await self._sleep(delay)
                    continue

                logger.warning("%s attempt %d/%d failed: %s", action, attempt, max_attempts, error)
                raise RetryExhaustedError(action, attempt, error) from exc

            if attempt > 1:
                logger.info("%s succeeded on attempt %d", action, attempt)
            return RetryOutcome(value=value, attempts=attempt)

        # max_attempts >= 1 guarantees the loop returns or raises
        raise RetryExhaustedError(action, max_attempts, last_error or XChainError(action))
