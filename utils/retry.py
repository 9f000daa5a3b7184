"""Bounded retry policy shared by every collaborator call (extraction, vision, storage, catalog)."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger("listing_sms")

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised by :meth:`RetryPolicy.poll` when the result never became ready."""

    def __init__(self, operation: str, attempts: int):
        super().__init__(f"{operation} not ready after {attempts} attempts")
        self.operation = operation
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    """A few attempts with short delays; ``backoff`` > 1 turns the fixed delay exponential."""

    max_attempts: int = 3
    delay_seconds: float = 1.0
    backoff: float = 1.0
    max_delay_seconds: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.delay_seconds * (self.backoff ** max(0, attempt - 1))
        return min(self.max_delay_seconds, delay)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        operation: str = "operation",
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ) -> T:
        """Call ``fn`` until it succeeds; re-raise the last error once attempts are used up."""
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except retry_on as e:
                last_error = e
                if attempt >= self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(f"⚠️ {operation} failed (attempt {attempt}/{self.max_attempts}): {e}; retrying in {delay}s")
                await asyncio.sleep(delay)
        if last_error is None:
            raise RetryExhaustedError(operation, self.max_attempts)
        raise last_error

    async def poll(
        self,
        fn: Callable[[], Awaitable[Optional[T]]],
        *,
        operation: str = "poll",
    ) -> T:
        """Call ``fn`` until it returns something other than None (errors count as "not ready")."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await fn()
                if result is not None:
                    return result
                logger.info(f"⏳ {operation}: attempt {attempt}/{self.max_attempts} not ready yet")
            except Exception as e:
                logger.warning(f"⚠️ {operation}: attempt {attempt}/{self.max_attempts} failed: {e}")
            if attempt < self.max_attempts:
                await asyncio.sleep(self.delay_for(attempt))
        raise RetryExhaustedError(operation, self.max_attempts)


NO_RETRY = RetryPolicy(max_attempts=1, delay_seconds=0.0)
