"""Single retry policy shared by the poller, the deletion engine and cleanup."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .errors import TransientApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


def is_transient(error: BaseException) -> bool:
    return isinstance(error, TransientApiError)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with fixed or exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff_seconds: Delay after the first failed attempt.
        multiplier: Growth factor per attempt (1.0 means fixed backoff).
        jitter: Random extra delay as a fraction of the backoff.
        retryable: Predicate deciding whether an error is worth another attempt.
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    multiplier: float = 2.0
    jitter: float = 0.2
    retryable: Callable[[BaseException], bool] = field(default=is_transient)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")

    @classmethod
    def fixed(
        cls,
        max_attempts: int,
        backoff_seconds: float,
        retryable: Callable[[BaseException], bool] = is_transient,
    ) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            multiplier=1.0,
            jitter=0.0,
            retryable=retryable,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after `attempt` (1-based) failed."""
        backoff = self.backoff_seconds * (self.multiplier ** (attempt - 1))
        if self.jitter:
            backoff += random.uniform(0, backoff * self.jitter)
        return backoff

    async def call(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        sleep: Sleeper = asyncio.sleep,
        description: str = "operation",
    ) -> T:
        """Await `func()` until it succeeds or the budget is spent.

        Errors rejected by `retryable` propagate immediately. The last
        retryable error propagates once the attempts are exhausted.
        """
        last_error: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func()
            except Exception as e:
                if not self.retryable(e):
                    raise
                last_error = e

                if attempt < self.max_attempts:
                    wait_time = self.delay_for(attempt)
                    logger.warning(
                        f"{description} failed, retrying",
                        extra={
                            "attempt": attempt,
                            "max_attempts": self.max_attempts,
                            "wait_seconds": round(wait_time, 2),
                            "error": str(e),
                        },
                    )
                    await sleep(wait_time)

        assert last_error is not None
        raise last_error
