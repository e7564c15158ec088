"""Rate limiting for appointment transition requests.

The limiter is a collaborator handed to the request gate, not module state:
the application builds one at startup and keeps it on ``app.state``.
"""

import logging
import time
from typing import Callable, Optional, Protocol

from app.core.config import Settings

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool:
        ...


class TokenBucketRateLimiter:
    """Per-key token bucket.

    Each key starts with ``capacity`` tokens and regains
    ``refill_per_second`` tokens per second up to ``capacity``.
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._buckets: dict[str, tuple[float, float]] = {}  # key -> (tokens, last refill)

    def allow(self, key: str) -> bool:
        now = self._clock()
        tokens, last = self._buckets.get(key, (float(self.capacity), now))
        tokens = min(float(self.capacity), tokens + (now - last) * self.refill_per_second)

        if tokens < 1:
            self._buckets[key] = (tokens, now)
            logger.warning("Rate limit exceeded for %s", key)
            return False

        self._buckets[key] = (tokens - 1, now)
        return True


def build_rate_limiter(settings: Settings) -> Optional[RateLimiter]:
    """Create the limiter configured by ``settings``, or None when disabled."""
    if not settings.RATE_LIMIT_ENABLED:
        return None
    logger.info(
        "Transition rate limit: %d requests, refilling %.2f/s per caller",
        settings.RATE_LIMIT_CAPACITY,
        settings.RATE_LIMIT_REFILL_PER_SECOND,
    )
    return TokenBucketRateLimiter(settings.RATE_LIMIT_CAPACITY, settings.RATE_LIMIT_REFILL_PER_SECOND)
