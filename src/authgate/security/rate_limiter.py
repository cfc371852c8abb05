"""Per-address token buckets for the OAuth endpoints.

Every limited endpoint charges one token to the bucket of the calling peer
address (``request.client.host``). Three tiers are shared process-wide:

  - token:       5 req/s, burst 30  (token, device polling, introspection, revocation)
  - auth:        1 req/s, burst 10  (authorize, PAR, device verification, CIBA approval and status)
  - backchannel: 2 req/s, burst 10  (device and CIBA request creation)

Buckets idle for an hour are dropped by the expiry sweeper.
"""

from __future__ import annotations

import math
import threading
import time

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "token_limiter",
    "auth_limiter",
    "backchannel_limiter",
    "cleanup_all",
    "reset_all",
]


class _Bucket:
    __slots__ = ("tokens", "updated")

    def __init__(self, tokens: float, updated: float):
        self.tokens = tokens
        self.updated = updated


class RateLimitInfo:
    """Outcome of one ``RateLimiter.check`` call."""

    __slots__ = ("allowed", "limit", "remaining", "reset_after")

    def __init__(self, allowed: bool, limit: int, remaining: int, reset_after: float):
        self.allowed = allowed
        self.limit = limit
        self.remaining = remaining
        self.reset_after = reset_after

    def headers(self) -> dict[str, str]:
        """``X-RateLimit-*`` headers, plus ``Retry-After`` when refused."""
        reset = str(math.ceil(self.reset_after))
        h = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset,
        }
        if not self.allowed:
            h["Retry-After"] = reset
        return h


class RateLimiter:
    """Token bucket per peer address.

    ``rate`` tokens per second refill each bucket up to ``capacity``, which is
    also the burst a fresh address gets.
    """

    def __init__(self, rate: float, capacity: int):
        self.rate = rate
        self.capacity = capacity
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, address: str) -> bool:
        return self.check(address).allowed

    def check(self, address: str) -> RateLimitInfo:
        """Charge one request to *address*."""
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.setdefault(address, _Bucket(self.capacity, now))
            bucket.tokens = min(
                self.capacity, bucket.tokens + (now - bucket.updated) * self.rate
            )
            bucket.updated = now
            if bucket.tokens < 1.0:
                wait = (1.0 - bucket.tokens) / self.rate if self.rate > 0 else 1.0
                return RateLimitInfo(False, self.capacity, 0, wait)
            bucket.tokens -= 1.0
            full_in = (self.capacity - bucket.tokens) / self.rate if self.rate > 0 else 0.0
            return RateLimitInfo(True, self.capacity, int(bucket.tokens), full_in)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Drop buckets untouched for *max_age* seconds; returns how many."""
        cutoff = time.monotonic() - max_age
        with self._lock:
            idle = [a for a, b in self._buckets.items() if b.updated < cutoff]
            for address in idle:
                del self._buckets[address]
        return len(idle)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


token_limiter = RateLimiter(rate=5.0, capacity=30)
auth_limiter = RateLimiter(rate=1.0, capacity=10)
backchannel_limiter = RateLimiter(rate=2.0, capacity=10)

_ALL = (token_limiter, auth_limiter, backchannel_limiter)


def cleanup_all() -> int:
    """Sweep every shared limiter; returns the number of buckets dropped."""
    return sum(limiter.cleanup() for limiter in _ALL)


def reset_all() -> None:
    for limiter in _ALL:
        limiter.reset()
