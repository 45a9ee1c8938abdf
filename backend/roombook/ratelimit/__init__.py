"""In-memory API rate limiting with progressive backoff."""

from .api_rate_limit import (
    ApiRateLimiter,
    ApiRateLimitResult,
    RateLimitConfig,
    check_api_rate_limit,
    clear_rate_limit_store,
    get_client_ip,
    get_rate_limit_message,
)
from .dependency import rate_limit

__all__ = [
    "ApiRateLimitResult",
    "ApiRateLimiter",
    "RateLimitConfig",
    "check_api_rate_limit",
    "clear_rate_limit_store",
    "get_client_ip",
    "get_rate_limit_message",
    "rate_limit",
]
