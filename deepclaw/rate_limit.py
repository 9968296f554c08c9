"""
DeepClaw Rate Limiter - per-IP token bucket.

One instance is created per app (or injected by the caller) and kept on
``app.state``; buckets live in memory for the lifetime of that instance.
"""
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from deepclaw.config import RATE_LIMIT_REQUESTS_PER_MINUTE


@dataclass
class _Bucket:
    tokens: float
    updated: float


class RateLimiter:
    def __init__(
        self,
        requests_per_minute: int = RATE_LIMIT_REQUESTS_PER_MINUTE,
        clock: Optional[Callable[[], float]] = None,
        max_keys: int = 10_000,
    ):
        self.capacity = float(requests_per_minute)
        self.refill_per_second = requests_per_minute / 60.0
        self.clock = clock or time.monotonic
        self.max_keys = max_keys
        self._buckets: "OrderedDict[str, _Bucket]" = OrderedDict()
        self._lock = threading.Lock()

    def _refill(self, bucket: _Bucket, now: float) -> None:
        elapsed = max(0.0, now - bucket.updated)
        bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.refill_per_second)
        bucket.updated = now

    def _prune(self, now: float) -> None:
        # Full buckets carry no state worth keeping.
        for key in [k for k, b in self._buckets.items()
                    if b.tokens + (now - b.updated) * self.refill_per_second >= self.capacity]:
            del self._buckets[key]

    def check_ip(self, ip: str) -> dict:
        """Take one token for ``ip``. Returns the decision and, if denied, seconds to wait."""
        with self._lock:
            now = self.clock()
            bucket = self._buckets.get(ip)
            if bucket is None:
                if len(self._buckets) >= self.max_keys:
                    self._prune(now)
                # least recently seen IPs go first when still at the cap
                while self._buckets and len(self._buckets) >= self.max_keys:
                    self._buckets.popitem(last=False)
                bucket = self._buckets[ip] = _Bucket(tokens=self.capacity, updated=now)
            else:
                self._refill(bucket, now)
                self._buckets.move_to_end(ip)

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return {"allowed": True, "remaining": int(bucket.tokens),
                        "limit": int(self.capacity), "retry_after": None}

            wait = (1.0 - bucket.tokens) / self.refill_per_second if self.refill_per_second else 60
            return {"allowed": False, "remaining": 0, "limit": int(self.capacity),
                    "retry_after": max(1, math.ceil(wait))}

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
