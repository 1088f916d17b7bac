"""
Bounded exponential backoff for optimistic-concurrency conflicts.

A versioned write that matches no row raises OptimisticLockError.  The
retrier re-runs the whole read-compute-write attempt after a growing delay,
and after ``max_attempts`` surfaces ConcurrencyConflictError, which callers
may retry at their own boundary.  Every other exception propagates on the
first attempt.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from inventory_kernel.exceptions import ConcurrencyConflictError, OptimisticLockError
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Delays in seconds.  Defaults: 50ms, x2, capped at 2s, 5 attempts."""

    initial_delay: float = 0.05
    multiplier: float = 2.0
    max_delay: float = 2.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


class ConflictRetrier:
    """Runs an attempt function until it stops losing version races."""

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy
        self._sleep = sleep

    def run(self, operation: str, attempt_fn: Callable[[int], T]) -> T:
        """
        Call ``attempt_fn(attempt_number)`` until it returns.

        Raises:
            ConcurrencyConflictError: every attempt raised OptimisticLockError.
        """
        last_conflict: OptimisticLockError | None = None
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return attempt_fn(attempt)
            except OptimisticLockError as exc:
                last_conflict = exc
                if attempt == self.policy.max_attempts:
                    break
                delay = self.policy.delay_for(attempt)
                logger.info(
                    "optimistic_conflict_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": self.policy.max_attempts,
                        "delay_seconds": delay,
                        "entity_type": exc.entity_type,
                        "entity_id": exc.entity_id,
                    },
                )
                self._sleep(delay)

        logger.warning(
            "optimistic_conflict_exhausted",
            extra={
                "operation": operation,
                "attempts": self.policy.max_attempts,
                "entity_type": last_conflict.entity_type,
                "entity_id": last_conflict.entity_id,
            },
        )
        raise ConcurrencyConflictError(
            last_conflict.entity_type,
            last_conflict.entity_id,
            self.policy.max_attempts,
        ) from last_conflict
