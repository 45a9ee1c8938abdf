from fastapi import HTTPException
from pydantic import ValidationError
import pytest

from roombook.core.config import Settings, is_running_tests
from roombook.core.exceptions import (
    BookingWindowExceededException,
    CouponAlreadyUsedException,
    CouponRequiresCashPaymentException,
    CreditConsumedByAnotherException,
    InsufficientCreditsException,
    PartialConsumptionException,
    TurnoProtectionException,
)


class TestDomainExceptions:
    def test_insufficient_credits_carries_amounts(self) -> None:
        exc = InsufficientCreditsException(available_cents=1500, required_cents=6000)

        assert exc.code == "INSUFFICIENT_CREDITS"
        assert exc.status_code == 400
        assert exc.to_dict()["details"] == {"available_cents": 1500, "required_cents": 6000}

    def test_concurrency_errors_are_conflicts(self) -> None:
        consumed = CreditConsumedByAnotherException("01HXYZ")
        partial = PartialConsumptionException(consumed_cents=3000, expected_cents=6000)

        assert consumed.status_code == partial.status_code == 409
        assert consumed.details["credit_id"] == "01HXYZ"
        assert partial.code == "PARTIAL_CONSUMPTION"

    def test_to_http_exception(self) -> None:
        http_exc = CouponAlreadyUsedException("ARTHEMI10").to_http_exception()

        assert isinstance(http_exc, HTTPException)
        assert http_exc.status_code == 409
        assert http_exc.detail["code"] == "COUPON_ALREADY_USED"

    def test_business_rule_codes(self) -> None:
        assert CouponRequiresCashPaymentException("TESTE50").code == "COUPON_REQUIRES_CASH_PAYMENT"
        assert TurnoProtectionException("blocked").code == "TURNO_PROTECTION_30D"
        window = BookingWindowExceededException(30, "2026-04-01")
        assert window.code == "BOOKING_WINDOW_EXCEEDED"
        assert "30 dias" in window.message


class TestSettings:
    def test_defaults(self) -> None:
        config = Settings(_env_file=None)

        assert config.cleaning_buffer_minutes == 30
        assert config.max_booking_window_days == 30
        assert config.min_payable_amount_cents == 100
        assert config.rate_limit_max_requests == 15
        assert config.business_timezone == "America/Sao_Paulo"

    def test_env_override(self, monkeypatch) -> None:
        monkeypatch.setenv("CLEANING_BUFFER_MINUTES", "15")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = Settings(_env_file=None)

        assert config.cleaning_buffer_minutes == 15
        assert config.log_level == "DEBUG"

    def test_rejects_non_positive_window(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, rate_limit_window_seconds=0)

    def test_rejects_backoff_cap_below_base(self) -> None:
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                rate_limit_backoff_base_seconds=30,
                rate_limit_backoff_max_seconds=10,
            )

    def test_is_production(self) -> None:
        assert Settings(_env_file=None, environment=" Production ").is_production
        assert not Settings(_env_file=None).is_production

    def test_detects_pytest(self) -> None:
        assert is_running_tests()
