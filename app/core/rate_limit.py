"""
In-process request throttle for the OTP endpoints.

Buckets are keyed by ``"<client ip>:<path>"``. Each bucket holds ``capacity``
tokens and is reset to full capacity (not refilled gradually) once more than
``window_seconds`` have passed since its last reset.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

from fastapi import Request

from app.core.config import settings
from app.core.exceptions import ErrorCode, ServiceError

logger = logging.getLogger(__name__)


class AtomicCounter:
    """Integer cell with compare-and-set semantics"""

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> int:
        return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value

    def compare_and_set(self, expected: int, new: int) -> bool:
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True


class RateLimitBucket:
    """Token bucket with hard reset at the end of each window"""

    def __init__(self, capacity: int, window_seconds: float, clock: Callable[[], float]):
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._tokens = AtomicCounter(capacity)
        self._last_reset = clock()
        self._reset_lock = threading.Lock()

    @property
    def remaining(self) -> int:
        return self._tokens.get()

    def try_consume(self) -> bool:
        self._reset_if_due()
        current = self._tokens.get()
        while current > 0:
            if self._tokens.compare_and_set(current, current - 1):
                return True
            current = self._tokens.get()
        return False

    def _reset_if_due(self) -> None:
        now = self._clock()
        if now - self._last_reset > self.window_seconds:
            with self._reset_lock:
                # Another caller may have reset while we waited
                if now - self._last_reset > self.window_seconds:
                    self._tokens.set(self.capacity)
                    self._last_reset = now


class RateLimiter:
    """Per-key registry of rate limit buckets"""

    def __init__(
        self,
        capacity: int = 10,
        window_seconds: float = 60,
        clock: Optional[Callable[[], float]] = None
    ):
        if capacity < 1:
            raise ValueError("Rate limit capacity must be at least 1")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._registry_lock = threading.Lock()

    def _bucket(self, key: str) -> RateLimitBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            with self._registry_lock:
                bucket = self._buckets.get(key)
                if bucket is None:
                    bucket = RateLimitBucket(self.capacity, self.window_seconds, self._clock)
                    self._buckets[key] = bucket
        return bucket

    def try_consume(self, key: str) -> bool:
        """Take one token for ``key``; False when the bucket is empty"""
        return self._bucket(key).try_consume()

    def remaining(self, key: str) -> int:
        bucket = self._buckets.get(key)
        return self.capacity if bucket is None else bucket.remaining

    def __len__(self) -> int:
        return len(self._buckets)


def get_client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Client address; the first X-Forwarded-For hop only when the proxy is trusted"""
    if trust_forwarded_for:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


async def enforce_otp_rate_limit(request: Request) -> None:
    """Router dependency rejecting callers over their per-minute budget"""
    limiter: RateLimiter = request.app.state.rate_limiter
    path = request.url.path
    bucket_key = f"{get_client_ip(request, settings.TRUST_FORWARDED_FOR)}:{path}"

    if not limiter.try_consume(bucket_key):
        logger.warning(f"Rate limit exceeded for IP: [MASKED] on path: {path}")
        raise ServiceError(ErrorCode.RATE_LIMIT_EXCEEDED)
