"""
Process-wide request pacing for JSON-RPC providers.

Free-tier node providers reject bursts with HTTP 429. Every RpcClient in the
process shares one RateLimiter so request submission is serialized across
threads, regardless of how many clients were constructed.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

# Provider ceiling (requests per second)
MAX_REQUESTS_PER_SECOND = 3


class RateLimiter:
    """Enforce a minimum interval between consecutive request submissions.

    The last-send timestamp is guarded by a single lock. Callers block while
    holding it, so the sleep itself is serialized too: two threads arriving
    together leave at least ``min_interval`` apart.
    """

    def __init__(
        self,
        max_per_second: float = MAX_REQUESTS_PER_SECOND,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_per_second <= 0:
            raise ValueError("max_per_second must be positive")
        self.min_interval = 1.0 / max_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_sent: Optional[float] = None

    @property
    def last_sent(self) -> Optional[float]:
        return self._last_sent

    def acquire(self) -> float:
        """
        Wait until a request may be sent, then stamp the send time.

        Returns:
            Seconds spent waiting (0.0 when no wait was needed)
        """
        with self._lock:
            waited = 0.0
            if self._last_sent is not None:
                elapsed = self._clock() - self._last_sent
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self._sleep(waited)
            self._last_sent = self._clock()
            return waited


_default_limiter: Optional[RateLimiter] = None
_default_limiter_lock = threading.Lock()


def default_rate_limiter() -> RateLimiter:
    """Return the limiter shared by every client in this process."""
    global _default_limiter
    with _default_limiter_lock:
        if _default_limiter is None:
            _default_limiter = RateLimiter()
        return _default_limiter
