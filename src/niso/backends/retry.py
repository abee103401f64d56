"""Bounded exponential backoff for rate-limited backend calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from niso.errors import ConfigurationInvalid, RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry on RateLimited with delays base * factor**attempt, capped.

    A server-provided ``retry_after`` takes precedence when it is longer
    than the computed delay. After ``max_attempts`` calls the last
    RateLimited is re-raised.
    """

    max_attempts: int = 4
    base_delay: float = 1.0  # seconds
    factor: float = 2.0
    max_delay: float = 60.0  # seconds

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationInvalid("max_attempts", "must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.factor < 1:
            raise ConfigurationInvalid("retry", "delays must be >= 0 and factor >= 1")

    @classmethod
    def disabled(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        computed = min(self.base_delay * self.factor**attempt, self.max_delay)
        if retry_after is not None:
            return min(max(computed, retry_after), self.max_delay)
        return computed

    def call(
        self,
        fn: Callable[[], T],
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        for attempt in range(self.max_attempts):
            try:
                return fn()
            except RateLimited as exc:
                if attempt + 1 >= self.max_attempts:
                    raise
                wait = self.delay(attempt, exc.retry_after)
                logger.warning(
                    "Rate limited (attempt %d/%d), retrying in %.1fs",
                    attempt + 1,
                    self.max_attempts,
                    wait,
                )
                sleep(wait)
        raise AssertionError("unreachable")
