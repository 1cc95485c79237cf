from __future__ import annotations

"""Bounded retry helper shared by order reconciliation and exit execution."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger("updownStrategy.strategy.retry")

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """``max_attempts`` tries separated by ``delay * backoff**n`` seconds, capped at ``max_delay``."""

    max_attempts: int = 3
    delay: float = 0.0
    backoff: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        if self.delay <= 0:
            return 0.0
        return min(self.max_delay, self.delay * (self.backoff ** max(0, attempt - 1)))


@dataclass
class RetryOutcome(Generic[T]):
    succeeded: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None


class BoundedRetry:
    def __init__(
        self,
        policy: RetryPolicy,
        *,
        name: str = "operation",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self.name = name
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        accept: Callable[[T], bool] = lambda _value: True,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        fallback: Optional[Callable[[RetryOutcome[T]], Awaitable[None]]] = None,
    ) -> RetryOutcome[T]:
        """Call ``operation(attempt)`` until ``accept`` holds or attempts run out.

        Exceptions listed in ``retry_on`` count as a failed attempt; anything else
        propagates. ``value`` of a failed outcome is the last value returned, if
        any. ``fallback`` runs once when every attempt failed.
        """

        attempts = max(1, self.policy.max_attempts)
        last_value: Optional[T] = None
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                value = await operation(attempt)
            except retry_on as exc:
                last_error = exc
                logger.info("%s attempt %s/%s failed: %s", self.name, attempt, attempts, exc)
            else:
                last_value = value
                if accept(value):
                    return RetryOutcome(succeeded=True, attempts=attempt, value=value)
                logger.debug("%s attempt %s/%s not accepted: %r", self.name, attempt, attempts, value)
            if attempt < attempts:
                wait = self.policy.delay_for(attempt)
                if wait > 0:
                    await self._sleep(wait)
        outcome: RetryOutcome[T] = RetryOutcome(
            succeeded=False,
            attempts=attempts,
            value=last_value,
            error=last_error,
        )
        if fallback is not None:
            await fallback(outcome)
        return outcome
