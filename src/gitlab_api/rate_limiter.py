"""
GitLab Backup - Rate Limiter Module

Token buckets per GitLab endpoint family.

GitLab enforces hard per-minute ceilings on the import/export and files APIs.
Going over them yields HTTP 429 and risks account-level throttling, so every
call waits for a token here instead of retrying after a rejection.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from cancellation import CancelToken
from config import (
    DOWNLOAD_RATE_LIMIT_BURST,
    EXPORT_RATE_LIMIT_BURST,
    IMPORT_RATE_LIMIT_BURST,
    METADATA_RATE_LIMIT_BURST,
    RATE_LIMIT_INTERVAL_SECONDS,
)

logger = logging.getLogger(__name__)


class OperationClass(str, Enum):
    """Endpoint families with independent limits."""

    DOWNLOAD = "download"
    EXPORT = "export"
    IMPORT = "import"
    METADATA = "metadata"


class RateLimiter:
    """Thread-safe token bucket with continuous refill.

    Tokens refill at ``burst / interval`` per second and never exceed ``burst``.
    The bucket starts full.
    """

    def __init__(
        self,
        burst: int,
        interval: float,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        if burst < 1:
            raise ValueError("burst must be at least 1")
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.name = name
        self.burst = burst
        self.interval = interval
        self._rate = burst / interval
        self._clock = clock
        self._tokens = float(burst)
        self._updated = clock()
        self._lock = threading.Lock()

    @property
    def tokens(self) -> float:
        """Currently available tokens."""
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(float(self.burst), self._tokens + elapsed * self._rate)
        self._updated = now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, token: CancelToken) -> None:
        """Block until a token is available.

        Raises:
            OperationCancelled: If ``token`` is cancelled first. No token is consumed.
        """
        token.raise_if_cancelled()
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                delay = (1 - self._tokens) / self._rate

            logger.debug(f"Rate limit reached for {self.name or 'limiter'}, waiting {delay:.1f}s")
            token.wait(delay)


class RateLimiters:
    """One RateLimiter per OperationClass, shared by all workers."""

    def __init__(self, limiters: dict[OperationClass, RateLimiter]):
        missing = set(OperationClass) - set(limiters)
        if missing:
            raise ValueError(f"missing rate limiters for: {sorted(m.value for m in missing)}")
        self._limiters = dict(limiters)

    @classmethod
    def default(cls, clock: Optional[Callable[[], float]] = None) -> "RateLimiters":
        """Limiters with GitLab's documented per-minute limits."""
        bursts = {
            OperationClass.DOWNLOAD: DOWNLOAD_RATE_LIMIT_BURST,
            OperationClass.EXPORT: EXPORT_RATE_LIMIT_BURST,
            OperationClass.IMPORT: IMPORT_RATE_LIMIT_BURST,
            OperationClass.METADATA: METADATA_RATE_LIMIT_BURST,
        }
        return cls.uniform(bursts, RATE_LIMIT_INTERVAL_SECONDS, clock=clock)

    @classmethod
    def uniform(
        cls,
        bursts: dict[OperationClass, int],
        interval: float,
        clock: Optional[Callable[[], float]] = None,
    ) -> "RateLimiters":
        kwargs = {"clock": clock} if clock is not None else {}
        return cls({
            op: RateLimiter(burst, interval, name=op.value, **kwargs)
            for op, burst in bursts.items()
        })

    def get(self, op: OperationClass) -> RateLimiter:
        return self._limiters[op]

    def acquire(self, token: CancelToken, op: OperationClass) -> None:
        """Wait for a token of the given class."""
        self._limiters[op].acquire(token)
