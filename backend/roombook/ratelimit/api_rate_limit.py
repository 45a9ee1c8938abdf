# backend/roombook/ratelimit/api_rate_limit.py
"""
Process-local fixed-window rate limiter with progressive backoff.

Keys are `endpoint:client`. Once a key exhausts its window it is locked
out for 10s, then 20s, 40s, ... up to the cap; the escalation resets after
a quiet period. State lives in this process only, so every worker keeps
its own counters.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import threading
import time
from typing import Dict, Mapping, Optional

from ..core.config import settings
from ..core.constants import RATE_LIMIT_WINDOW_EVICTION_MULTIPLIER
from ..monitoring.prometheus_metrics import prometheus_metrics

RATE_LIMIT_MESSAGE = "Muitas tentativas. Aguarde um momento antes de tentar novamente."


@dataclass
class RateLimitEntry:
    count: int
    window_start: float


@dataclass
class BlockEntry:
    block_count: int
    blocked_until: float
    last_block_time: float


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: float
    backoff_base_seconds: int
    backoff_max_seconds: int
    backoff_reset_seconds: float

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        return cls(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
            backoff_base_seconds=settings.rate_limit_backoff_base_seconds,
            backoff_max_seconds=settings.rate_limit_backoff_max_seconds,
            backoff_reset_seconds=settings.rate_limit_backoff_reset_seconds,
        )


@dataclass(frozen=True)
class ApiRateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after_seconds: Optional[int] = None


def calculate_backoff_seconds(block_count: int, base_seconds: int, max_seconds: int) -> int:
    return min(base_seconds * 2 ** (block_count - 1), max_seconds)


class ApiRateLimiter:
    """Two in-memory stores guarded by one lock."""

    def __init__(self, cleanup_interval_seconds: Optional[float] = None):
        self._lock = threading.Lock()
        self._windows: Dict[str, RateLimitEntry] = {}
        self._blocks: Dict[str, BlockEntry] = {}
        self._cleanup_interval = (
            cleanup_interval_seconds
            if cleanup_interval_seconds is not None
            else settings.rate_limit_cleanup_interval_seconds
        )
        self._last_cleanup = time.time()

    def check(
        self,
        endpoint: str,
        client_id: str,
        config: Optional[RateLimitConfig] = None,
        now: Optional[float] = None,
    ) -> ApiRateLimitResult:
        config = config or RateLimitConfig.from_settings()
        now = time.time() if now is None else now
        key = f"{endpoint}:{client_id}"

        with self._lock:
            if now - self._last_cleanup >= self._cleanup_interval:
                self._cleanup_locked(now, config)
                self._last_cleanup = now

            block = self._blocks.get(key)
            if block and now < block.blocked_until:
                result = ApiRateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=block.blocked_until,
                    retry_after_seconds=math.ceil(block.blocked_until - now),
                )
                action = "blocked"
            else:
                result, action = self._check_window_locked(key, now, config)

        prometheus_metrics.inc_rate_limit_decision(endpoint, action)
        return result

    def _check_window_locked(self, key: str, now: float, config: RateLimitConfig):
        entry = self._windows.get(key)
        if entry is None or now - entry.window_start >= config.window_seconds:
            self._windows[key] = RateLimitEntry(count=1, window_start=now)
            return (
                ApiRateLimitResult(
                    allowed=True, remaining=config.max_requests - 1, reset_at=now + config.window_seconds
                ),
                "allow",
            )

        if entry.count >= config.max_requests:
            previous = self._blocks.get(key)
            block_count = 1
            if previous and now - previous.last_block_time < config.backoff_reset_seconds:
                block_count = previous.block_count + 1
            backoff = calculate_backoff_seconds(
                block_count, config.backoff_base_seconds, config.backoff_max_seconds
            )
            blocked_until = now + backoff
            self._blocks[key] = BlockEntry(
                block_count=block_count, blocked_until=blocked_until, last_block_time=now
            )
            return (
                ApiRateLimitResult(
                    allowed=False, remaining=0, reset_at=blocked_until, retry_after_seconds=backoff
                ),
                "violation",
            )

        entry.count += 1
        return (
            ApiRateLimitResult(
                allowed=True,
                remaining=config.max_requests - entry.count,
                reset_at=entry.window_start + config.window_seconds,
            ),
            "allow",
        )

    def cleanup(self, now: Optional[float] = None, config: Optional[RateLimitConfig] = None) -> None:
        with self._lock:
            self._cleanup_locked(time.time() if now is None else now, config or RateLimitConfig.from_settings())

    def _cleanup_locked(self, now: float, config: RateLimitConfig) -> None:
        window_ttl = RATE_LIMIT_WINDOW_EVICTION_MULTIPLIER * config.window_seconds
        for key in [k for k, e in self._windows.items() if now - e.window_start > window_ttl]:
            del self._windows[key]
        for key in [k for k, b in self._blocks.items() if now - b.last_block_time > config.backoff_reset_seconds]:
            del self._blocks[key]

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()
            self._blocks.clear()

    @property
    def store_size(self) -> int:
        return len(self._windows)

    @property
    def block_store_size(self) -> int:
        return len(self._blocks)


_default_limiter = ApiRateLimiter()


def get_rate_limiter() -> ApiRateLimiter:
    return _default_limiter


def check_api_rate_limit(
    endpoint: str,
    client_id: str,
    config: Optional[RateLimitConfig] = None,
    now: Optional[float] = None,
) -> ApiRateLimitResult:
    return _default_limiter.check(endpoint, client_id, config=config, now=now)


def clear_rate_limit_store() -> None:
    _default_limiter.clear()


def get_rate_limit_store_size() -> int:
    return _default_limiter.store_size


def get_block_store_size() -> int:
    return _default_limiter.block_store_size


def get_client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket address."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return remote_addr or "unknown"


def get_rate_limit_message(retry_after_seconds: Optional[int] = None) -> str:
    if not retry_after_seconds:
        return RATE_LIMIT_MESSAGE
    if retry_after_seconds < 60:
        return f"Muitas tentativas. Tente novamente em {retry_after_seconds} segundos."
    minutes = math.ceil(retry_after_seconds / 60)
    return f"Muitas tentativas. Tente novamente em {minutes} minuto{'s' if minutes > 1 else ''}."
