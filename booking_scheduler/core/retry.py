"""Bounded exponential backoff shared by booking, validation and slot locking callers"""
import logging
import random
import time
from typing import Callable, Optional, TypeVar

from booking_scheduler.config.settings import get_settings
from booking_scheduler.core.errors import classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Classify error -> retryable / non-retryable -> bounded exponential backoff.

    Non-retryable errors (conflicts, integrity violations) are re-raised on the
    first occurrence so the caller can ask the user to pick another slot.
    """

    def __init__(
            self,
            max_attempts: int = 3,
            base_delay: float = 1.0,
            max_delay: float = 5.0,
            jitter: float = 0.2,
            classify: Callable[[BaseException], bool] = classify_error,
            sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.classify = classify
        self.sleep = sleep

    @classmethod
    def from_settings(cls, **overrides) -> "RetryPolicy":
        settings = get_settings()
        options = {
            "max_attempts": settings.RETRY_MAX_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY_SECONDS,
            "max_delay": settings.RETRY_MAX_DELAY_SECONDS,
        }
        options.update(overrides)
        return cls(**options)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1 = first retry)."""
        exponential = self.base_delay * (2 ** (attempt - 1))
        return min(exponential + random.uniform(0, self.jitter), self.max_delay)

    def call(self, fn: Callable[[], T], on_retry: Optional[Callable[[int, BaseException], None]] = None) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if not self.classify(exc):
                    logger.info(f"Non-retryable error on attempt {attempt}: {exc}")
                    raise
                if attempt == self.max_attempts:
                    logger.error(f"All {self.max_attempts} attempts failed: {exc}")
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed ({exc}), retrying in {delay:.2f}s"
                )
                if on_retry:
                    on_retry(attempt, exc)
                self.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover
