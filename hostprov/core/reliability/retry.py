"""
Retry policy — bounded exponential backoff with jitter.

Used by the executor when an adapter reports a shared resource as
busy (the dpkg/apt lock held by unattended-upgrades, typically).
Only busy receipts are retried; any other failure is final.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from hostprov.core.models.host import RetrySettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a busy resource.

    ``max_attempts`` counts every attempt, the first one included,
    so ``max_attempts=1`` means no retries.
    """

    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.3

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> RetryPolicy:
        """No waiting between attempts. For tests and simulations."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after ``attempt`` attempts."""
        return attempt < self.max_attempts

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait after the ``attempt``-th failed attempt (1-based)."""
        base = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        spread = (rng or random).uniform(0, base * self.jitter) if self.jitter else 0.0
        return base + spread
