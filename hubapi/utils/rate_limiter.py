"""
Rate Limiter Configuration

- HTTP: slowapi limiter, Redis-backed when REDIS_URL is set so limits
  hold across instances, in-memory otherwise
- Worker: in-process token bucket bounding webhook jobs per time window
"""

import logging
import threading
import time
from typing import Callable, Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import get_settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter(redis_url: Optional[str] = None) -> Limiter:
    """
    Create a rate limiter with appropriate storage backend.
    Uses Redis if configured, otherwise in-memory.
    """
    if redis_url:
        logger.info("Using Redis rate limiter storage")
        return Limiter(
            key_func=get_real_client_ip,
            storage_uri=redis_url,
            default_limits=["100/minute"]
        )
    logger.info("Using in-memory rate limiter storage")
    return Limiter(
        key_func=get_real_client_ip,
        default_limits=["100/minute"]
    )


# Global rate limiter instance (decorators bind to it at import time)
limiter = create_limiter(get_settings().redis_url)


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    "booking_create": "30/minute",
    "booking_get": "200/minute",
    "quote": "120/minute",
    "webhook": "100/minute",
    "webhook_admin": "60/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")


class TokenBucket:
    """
    Token bucket: `capacity` tokens, refilled continuously so that at most
    `capacity` acquisitions succeed per `window_seconds` on average.
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ):
        self.capacity = float(capacity)
        self.refill_rate = capacity / window_seconds  # tokens per second
        self.clock = clock
        self.tokens = float(capacity)
        self.last_refill_at = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self.last_refill_at
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill_at = now

    def try_acquire(self) -> bool:
        """Try to consume a token. Returns True if successful, False if no tokens."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return True
            return False

    def wait_time(self) -> float:
        """Seconds until a token is available."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                return 0.0
            return (1.0 - self.tokens) / self.refill_rate

    def acquire(self, stop_event: Optional[threading.Event] = None) -> bool:
        """Block until a token is consumed. Returns False if stop_event fires first."""
        while not self.try_acquire():
            delay = self.wait_time()
            if stop_event is not None:
                if stop_event.wait(delay):
                    return False
            else:
                time.sleep(delay)
        return True
