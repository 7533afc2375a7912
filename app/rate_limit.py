"""
Rate limiting for the Riskmate proof pack service.

Pack exports and verifications are limited per organization with a
sliding window. Every check reports the quota so routes can publish it
in X-RateLimit-* headers, on success as well as on 429.
"""

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Outcome of one quota check for an organization."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None
    limit: int = 0

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds a client should wait (at least 1 when limited)."""
        if self.retry_after is None:
            return 0
        return max(1, math.ceil(self.retry_after))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }


class RateLimiter:
    """
    Sliding window limiter keyed by organization id.

    Each organization keeps a deque of request timestamps; entries older
    than the window are dropped on every check. Thread-safe.
    """

    def __init__(self, rpm: int, window_seconds: int = 60):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.RLock()

    @property
    def limit(self) -> int:
        return self._limit

    def allow(self, org_id: str) -> bool:
        return self.check(org_id).allowed

    def check(self, org_id: str) -> RateLimitResult:
        """
        Count one request against the organization's quota.

        A rejected request is not recorded, so a client that keeps retrying
        does not extend its own lockout.
        """
        now = time.time()
        with self._lock:
            hits = self._hits[org_id]
            while hits and hits[0] < now - self._window:
                hits.popleft()

            reset_at = (hits[0] if hits else now) + self._window
            if len(hits) >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0.0, reset_at - now),
                    limit=self._limit,
                )

            hits.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=self._limit - len(hits),
                reset_at=reset_at,
                limit=self._limit,
            )

    def get_stats(self, org_id: str) -> Dict[str, int]:
        cutoff = time.time() - self._window
        with self._lock:
            count = sum(1 for t in self._hits.get(org_id, ()) if t >= cutoff)
        return {
            "current": count,
            "limit": self._limit,
            "remaining": max(0, self._limit - count),
            "window_seconds": self._window,
        }

    def reset(self, org_id: Optional[str] = None) -> None:
        """Forget recorded requests for one organization, or for all of them."""
        with self._lock:
            if org_id:
                self._hits.pop(org_id, None)
            else:
                self._hits.clear()
