import time

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
import pytest

from roombook.core.config import settings
from roombook.monitoring.prometheus_metrics import REGISTRY
from roombook.ratelimit import (
    ApiRateLimiter,
    RateLimitConfig,
    check_api_rate_limit,
    get_client_ip,
    get_rate_limit_message,
    rate_limit,
)
from roombook.ratelimit.api_rate_limit import (
    calculate_backoff_seconds,
    get_block_store_size,
    get_rate_limiter,
    get_rate_limit_store_size,
)

CONFIG = RateLimitConfig(
    max_requests=15,
    window_seconds=60,
    backoff_base_seconds=10,
    backoff_max_seconds=120,
    backoff_reset_seconds=600,
)
# A window long enough that escalating blocks never outlive it
LONG_WINDOW = RateLimitConfig(
    max_requests=15,
    window_seconds=3600,
    backoff_base_seconds=10,
    backoff_max_seconds=120,
    backoff_reset_seconds=600,
)
T0 = 1_000.0


@pytest.fixture
def limiter() -> ApiRateLimiter:
    # Explicit `now` values sit far in the past, so opportunistic cleanup never fires
    return ApiRateLimiter(cleanup_interval_seconds=300)


def exhaust(limiter, config=CONFIG, now=T0, endpoint="login", client="1.2.3.4"):
    return [limiter.check(endpoint, client, config, now=now).allowed for _ in range(config.max_requests)]


class TestBackoff:
    @pytest.mark.parametrize("count, expected", [(1, 10), (2, 20), (3, 40), (4, 80), (5, 120), (9, 120)])
    def test_doubles_up_to_cap(self, count: int, expected: int) -> None:
        assert calculate_backoff_seconds(count, 10, 120) == expected


class TestApiRateLimiter:
    def test_window_allows_max_requests(self, limiter) -> None:
        first = limiter.check("login", "1.2.3.4", CONFIG, now=T0)

        assert first.allowed
        assert first.remaining == 14
        assert first.reset_at == T0 + 60
        assert all(exhaust(limiter, now=T0 + 1)[:14])

    def test_violation_then_blocked(self, limiter) -> None:
        assert all(exhaust(limiter))

        violation = limiter.check("login", "1.2.3.4", CONFIG, now=T0 + 1)
        blocked = limiter.check("login", "1.2.3.4", CONFIG, now=T0 + 5.5)

        assert not violation.allowed
        assert violation.retry_after_seconds == 10
        assert violation.remaining == 0
        assert not blocked.allowed
        # Remaining lockout rounds up
        assert blocked.retry_after_seconds == 6
        assert blocked.reset_at == T0 + 11

    def test_repeat_violations_escalate_to_cap(self, limiter) -> None:
        exhaust(limiter, config=LONG_WINDOW)
        now = T0
        backoffs = []
        for _ in range(6):
            result = limiter.check("login", "1.2.3.4", LONG_WINDOW, now=now)
            backoffs.append(result.retry_after_seconds)
            now += result.retry_after_seconds

        assert backoffs == [10, 20, 40, 80, 120, 120]

    def test_quiet_period_resets_escalation(self, limiter) -> None:
        exhaust(limiter, config=LONG_WINDOW)
        assert limiter.check("login", "1.2.3.4", LONG_WINDOW, now=T0).retry_after_seconds == 10
        assert limiter.check("login", "1.2.3.4", LONG_WINDOW, now=T0 + 10).retry_after_seconds == 20

        later = T0 + 10 + 601
        assert limiter.check("login", "1.2.3.4", LONG_WINDOW, now=later).retry_after_seconds == 10

    def test_new_window_after_expiry(self, limiter) -> None:
        exhaust(limiter)
        limiter.check("login", "1.2.3.4", CONFIG, now=T0 + 1)

        result = limiter.check("login", "1.2.3.4", CONFIG, now=T0 + 60)

        assert result.allowed
        assert result.remaining == 14

    def test_keys_are_per_endpoint_and_client(self, limiter) -> None:
        exhaust(limiter)

        assert limiter.check("login", "5.6.7.8", CONFIG, now=T0).allowed
        assert limiter.check("bookings", "1.2.3.4", CONFIG, now=T0).allowed
        assert not limiter.check("login", "1.2.3.4", CONFIG, now=T0).allowed

    def test_explicit_cleanup(self, limiter) -> None:
        exhaust(limiter)
        limiter.check("login", "1.2.3.4", CONFIG, now=T0 + 1)
        limiter.check("bookings", "9.9.9.9", CONFIG, now=T0 + 100)

        limiter.cleanup(now=T0 + 121, config=CONFIG)

        assert limiter.store_size == 1
        assert limiter.block_store_size == 1

        limiter.cleanup(now=T0 + 602, config=CONFIG)
        assert limiter.block_store_size == 0

    def test_opportunistic_cleanup(self) -> None:
        limiter = ApiRateLimiter(cleanup_interval_seconds=300)
        base = time.time()
        limiter.check("login", "1.1.1.1", CONFIG, now=base)

        limiter.check("login", "2.2.2.2", CONFIG, now=base + 400)

        assert limiter.store_size == 1

    def test_decisions_are_counted(self, limiter) -> None:
        def sample(action: str) -> float:
            value = REGISTRY.get_sample_value(
                "roombook_rate_limit_decisions_total", {"endpoint": "metrics-check", "action": action}
            )
            return value or 0.0

        before = {action: sample(action) for action in ("allow", "violation", "blocked")}
        exhaust(limiter, endpoint="metrics-check")
        limiter.check("metrics-check", "1.2.3.4", CONFIG, now=T0)
        limiter.check("metrics-check", "1.2.3.4", CONFIG, now=T0 + 1)

        assert sample("allow") - before["allow"] == 15
        assert sample("violation") - before["violation"] == 1
        assert sample("blocked") - before["blocked"] == 1


class TestModuleHelpers:
    def test_default_limiter_store(self) -> None:
        check_api_rate_limit("login", "1.2.3.4", CONFIG, now=T0)

        assert get_rate_limit_store_size() == 1
        assert get_rate_limiter().store_size == 1
        assert get_block_store_size() == 0

    def test_client_ip(self) -> None:
        assert get_client_ip({"x-forwarded-for": "10.0.0.1, 172.16.0.1"}, "127.0.0.1") == "10.0.0.1"
        assert get_client_ip({"x-real-ip": " 10.0.0.2 "}, "127.0.0.1") == "10.0.0.2"
        assert get_client_ip({}, "127.0.0.1") == "127.0.0.1"
        assert get_client_ip({}) == "unknown"

    def test_messages(self) -> None:
        assert get_rate_limit_message(None).startswith("Muitas tentativas")
        assert get_rate_limit_message(10) == "Muitas tentativas. Tente novamente em 10 segundos."
        assert get_rate_limit_message(60) == "Muitas tentativas. Tente novamente em 1 minuto."
        assert get_rate_limit_message(120) == "Muitas tentativas. Tente novamente em 2 minutos."


class TestRateLimitDependency:
    @pytest.fixture
    def client(self) -> TestClient:
        app = FastAPI()

        @app.get("/ping", dependencies=[Depends(rate_limit("ping"))])
        def ping() -> dict:
            return {"ok": True}

        return TestClient(app)

    def test_headers_then_429(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "rate_limit_max_requests", 2)
        headers = {"X-Forwarded-For": "203.0.113.7"}

        first = client.get("/ping", headers=headers)
        second = client.get("/ping", headers=headers)
        third = client.get("/ping", headers=headers)

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"
        assert third.status_code == 429
        assert third.headers["Retry-After"] == "10"
        assert third.headers["X-RateLimit-Remaining"] == "0"
        assert third.json()["detail"] == "Muitas tentativas. Tente novamente em 10 segundos."

        other_client = client.get("/ping", headers={"X-Forwarded-For": "203.0.113.8"})
        assert other_client.status_code == 200

    def test_disabled(self, client, monkeypatch) -> None:
        monkeypatch.setattr(settings, "rate_limit_enabled", False)
        monkeypatch.setattr(settings, "rate_limit_max_requests", 1)

        responses = [client.get("/ping") for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert "X-RateLimit-Remaining" not in responses[0].headers
