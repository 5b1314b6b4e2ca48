"""Fixed-window request limiting for the checkout endpoints."""
import threading
import time
from functools import lru_cache

import redis
import structlog
from fastapi import Depends, Request

from portal.config import get_settings
from portal.errors import RateLimited

logger = structlog.get_logger(__name__)


class RateLimiter:
    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def hit(self, key: str) -> tuple[bool, int]:
        """Count one request for ``key``; return ``(allowed, retry_after_seconds)``."""
        raise NotImplementedError


# per-process counters; set REDIS_URL when running more than one instance
class InMemoryRateLimiter(RateLimiter):
    def __init__(self, max_requests: int, window_seconds: int, clock=time.monotonic):
        super().__init__(max_requests, window_seconds)
        self.clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    def hit(self, key: str) -> tuple[bool, int]:
        now = self.clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                self._windows[key] = (1, now + self.window_seconds)
                return True, 0
            if count >= self.max_requests:
                return False, max(int(reset_at - now + 0.999), 1)
            self._windows[key] = (count + 1, reset_at)
            return True, 0

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.window_seconds

    def tracked_keys(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RedisRateLimiter(RateLimiter):
    def __init__(self, client: redis.Redis, max_requests: int, window_seconds: int,
                 prefix: str = "rate:checkout:"):
        super().__init__(max_requests, window_seconds)
        self.client = client
        self.prefix = prefix

    def hit(self, key: str) -> tuple[bool, int]:
        redis_key = f"{self.prefix}{key}"
        try:
            count = self.client.incr(redis_key)
            if count == 1:
                self.client.expire(redis_key, self.window_seconds)
            if count <= self.max_requests:
                return True, 0
            ttl = self.client.ttl(redis_key)
        except redis.RedisError as e:
            logger.warning("rate_limit_redis_error", error=str(e))
            return True, 0
        return False, ttl if ttl and ttl > 0 else self.window_seconds


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    if settings.redis_url:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisRateLimiter(client, settings.rate_limit_max, settings.rate_limit_window_seconds)
    logger.info("rate_limit_in_memory", note="single-instance deployments only")
    return InMemoryRateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def limit_requests(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    key = f"{client_ip(request)}:{request.url.path}"
    allowed, retry_after = limiter.hit(key)
    if not allowed:
        logger.warning("rate_limited", key=key, retry_after=retry_after)
        raise RateLimited(retry_after)
