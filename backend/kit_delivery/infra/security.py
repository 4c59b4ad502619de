import asyncio
import logging
import time
from collections import defaultdict, deque
from ipaddress import ip_address, ip_network
from typing import Deque, Dict, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError
from starlette.requests import Request

logger = logging.getLogger("kit_delivery.rate_limit")

_MAX_FORWARDED_HOPS = 20


class RateLimiter(Protocol):
    async def allow(self, key: str) -> bool: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...


class InMemoryRateLimiter:
    def __init__(
        self,
        requests_per_minute: int,
        cleanup_minutes: int = 10,
        *,
        window_seconds: int = 60,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.cleanup_minutes = cleanup_minutes
        self.window_seconds = max(1, int(window_seconds))
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_seen: Dict[str, float] = {}
        self._last_prune: float = 0.0
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        async with self._lock:
            now = time.time()
            self._maybe_prune(now)
            window_start = now - self.window_seconds
            timestamps = self._requests[key]
            while timestamps and timestamps[0] < window_start:
                timestamps.popleft()
            self._last_seen[key] = now
            if len(timestamps) >= self.requests_per_minute:
                return False
            timestamps.append(now)
            return True

    async def reset(self) -> None:
        self._requests.clear()
        self._last_seen.clear()
        self._last_prune = 0.0

    async def close(self) -> None:
        return None

    def _maybe_prune(self, now: float) -> None:
        if now - self._last_prune < 60:
            return
        expire_before = now - (self.cleanup_minutes * 60)
        for key in list(self._requests.keys()):
            if not self._requests[key] or self._last_seen.get(key, 0.0) < expire_before:
                self._requests.pop(key, None)
                self._last_seen.pop(key, None)
        self._last_prune = now


class RedisRateLimiter:
    """Fixed-window limiter shared across API replicas.

    Falls back to an in-memory window while Redis is unreachable so a cache outage
    never blocks postal code lookups at checkout.
    """

    key_prefix = "cep-rate-limit"

    def __init__(
        self,
        redis_url: str,
        requests_per_minute: int,
        cleanup_minutes: int = 10,
        redis_client: redis.Redis | None = None,
        fail_open_seconds: int = 300,
        *,
        window_seconds: int = 60,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.window_seconds = max(1, int(window_seconds))
        self.redis = redis_client or redis.from_url(redis_url, encoding="utf-8", decode_responses=False)
        self.fail_open_seconds = max(1, fail_open_seconds)
        self._fallback = InMemoryRateLimiter(
            requests_per_minute, cleanup_minutes=cleanup_minutes, window_seconds=self.window_seconds
        )
        self._fail_open_until: float = 0.0

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        if self._fail_open_until > now:
            return await self._fallback.allow(key)
        window = int(time.time() // self.window_seconds)
        redis_key = f"{self.key_prefix}:{key}:{window}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, self.window_seconds + 1)
                count, _ = await pipe.execute()
        except RedisError:
            self._fail_open_until = now + self.fail_open_seconds
            await self._fallback.reset()
            logger.warning("redis rate limiter unavailable; using in-memory fallback")
            return await self._fallback.allow(key)
        return int(count) <= self.requests_per_minute

    async def reset(self) -> None:
        await self._fallback.reset()
        try:
            cursor = 0
            while True:
                cursor, keys = await self.redis.scan(cursor=cursor, match=f"{self.key_prefix}:*", count=100)
                if keys:
                    await self.redis.delete(*keys)
                if cursor == 0:
                    break
        except RedisError:
            logger.warning("redis rate limiter reset failed")

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError:
            logger.warning("redis rate limiter close failed")


def create_rate_limiter(
    app_settings,
    requests_per_minute: int | None = None,
    *,
    window_seconds: int = 60,
) -> RateLimiter:
    limit = requests_per_minute or app_settings.rate_limit_per_minute
    if getattr(app_settings, "redis_url", None):
        return RedisRateLimiter(
            app_settings.redis_url,
            limit,
            cleanup_minutes=app_settings.rate_limit_cleanup_minutes,
            fail_open_seconds=getattr(app_settings, "rate_limit_fail_open_seconds", 300),
            window_seconds=window_seconds,
        )
    return InMemoryRateLimiter(
        limit,
        cleanup_minutes=app_settings.rate_limit_cleanup_minutes,
        window_seconds=window_seconds,
    )


def resolve_client_key(
    request: Request,
    trust_proxy_headers: bool,
    trusted_proxy_ips: list[str],
    trusted_proxy_cidrs: list[str],
) -> str:
    source_ip = request.client.host if request.client else "unknown"
    if not trust_proxy_headers:
        return source_ip
    cidrs: list[str] = list(trusted_proxy_cidrs)
    for ip_str in trusted_proxy_ips:
        try:
            ip_obj = ip_address(ip_str)
        except ValueError:
            continue
        bits = 32 if ip_obj.version == 4 else 128
        cidrs.append(f"{ip_str}/{bits}")
    if not _is_in_cidrs(source_ip, cidrs):
        return source_ip
    forwarded_for = _extract_xff(request.headers.get("x-forwarded-for", ""))
    return forwarded_for or source_ip


def _is_in_cidrs(client_host: str, cidrs: list[str]) -> bool:
    try:
        client_ip = ip_address(client_host)
    except ValueError:
        return False
    for cidr in cidrs:
        try:
            if client_ip in ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False


def _extract_xff(header: str) -> str | None:
    """Return the left-most valid IP from ``X-Forwarded-For``."""
    ips = [ip.strip() for ip in header.split(",") if ip.strip()]
    if not ips or len(ips) > _MAX_FORWARDED_HOPS:
        return None
    try:
        ip_address(ips[0])
    except ValueError:
        return None
    return ips[0]
