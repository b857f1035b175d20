"""librecloud_shared.rate_limiting — Fixed-window request counters.

One counter per identifier, reset when its window elapses. Expired counters
for every identifier are purged opportunistically on each check, so no
background sweep is needed.

The counter table sits behind `RateLimitStore`. `InMemoryRateLimitStore`
only holds within a single Lambda container; a shared backend can be swapped
in without touching call sites.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_IP = "localhost"


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: float
    max_requests: int

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds}")
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {self.max_requests}")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining_requests: int
    reset_time: float
    retry_after: Optional[int] = None


@dataclass
class _Window:
    count: int
    reset_time: float


class RateLimitStore:
    """Counter storage contract used by `RateLimiter`."""

    def get(self, identifier: str) -> Optional[_Window]:
        raise NotImplementedError

    def put(self, identifier: str, window: _Window) -> None:
        raise NotImplementedError

    def purge_expired(self, now: float) -> int:
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._windows: Dict[str, _Window] = {}

    def get(self, identifier: str) -> Optional[_Window]:
        return self._windows.get(identifier)

    def put(self, identifier: str, window: _Window) -> None:
        self._windows[identifier] = window

    def purge_expired(self, now: float) -> int:
        expired = [key for key, window in self._windows.items() if window.reset_time < now]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock
        self._lock = threading.Lock()

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        with self._lock:
            now = self.clock()
            self.store.purge_expired(now)

            current = self.store.get(identifier)
            if current is None or current.reset_time < now:
                window = _Window(count=1, reset_time=now + config.window_seconds)
                self.store.put(identifier, window)
                return RateLimitResult(
                    allowed=True,
                    remaining_requests=config.max_requests - 1,
                    reset_time=window.reset_time,
                )

            if current.count >= config.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining_requests=0,
                    reset_time=current.reset_time,
                    retry_after=max(1, math.ceil(current.reset_time - now)),
                )

            current.count += 1
            self.store.put(identifier, current)
            return RateLimitResult(
                allowed=True,
                remaining_requests=config.max_requests - current.count,
                reset_time=current.reset_time,
            )


def get_client_ip(headers: Optional[Mapping[str, str]]) -> str:
    """Resolve the caller IP from proxy headers, falling back to a sentinel."""
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}

    forwarded = lowered.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = (lowered.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    cf_ip = (lowered.get("cf-connecting-ip") or "").strip()
    if cf_ip:
        return cf_ip

    return DEFAULT_CLIENT_IP


def rate_limit_headers(config: RateLimitConfig, result: RateLimitResult) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining_requests),
        "X-RateLimit-Reset": dt.datetime.fromtimestamp(result.reset_time, dt.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after or int(config.window_seconds))
    return headers
