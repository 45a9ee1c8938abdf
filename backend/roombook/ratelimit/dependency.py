# backend/roombook/ratelimit/dependency.py
from __future__ import annotations

from fastapi import HTTPException, Request, Response

from ..core.config import settings
from .api_rate_limit import (
    ApiRateLimitResult,
    check_api_rate_limit,
    get_client_ip,
    get_rate_limit_message,
)


def set_rate_headers(res: Response, result: ApiRateLimitResult) -> None:
    res.headers["X-RateLimit-Remaining"] = str(max(result.remaining, 0))
    res.headers["X-RateLimit-Reset"] = str(int(result.reset_at))
    if result.retry_after_seconds and result.retry_after_seconds > 0:
        res.headers["Retry-After"] = str(result.retry_after_seconds)


def rate_limit(endpoint: str):
    # FastAPI dependency to attach on routes
    async def dep(request: Request, response: Response) -> None:
        if not settings.rate_limit_enabled:
            return

        client = getattr(request, "client", None)
        client_ip = get_client_ip(request.headers, getattr(client, "host", None) if client else None)
        result = check_api_rate_limit(endpoint, client_ip)

        if result.allowed:
            set_rate_headers(response, result)
            return

        retry_after = result.retry_after_seconds or int(settings.rate_limit_window_seconds)
        raise HTTPException(
            status_code=429,
            detail=get_rate_limit_message(result.retry_after_seconds),
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(result.reset_at)),
            },
        )

    return dep
