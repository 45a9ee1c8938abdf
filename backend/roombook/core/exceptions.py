# backend/roombook/core/exceptions.py
"""
Domain-specific exceptions for the room reservation engine.

These exceptions carry stable, client-facing codes so the UI can explain
why a booking, credit or coupon operation was refused. They can be
converted into FastAPI HTTP errors at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Booking


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class InsufficientNoticeException(BusinessRuleException):
    """Raised when a paid booking starts too soon."""

    def __init__(self, required_minutes: int, provided_minutes: float):
        super().__init__(
            message=f"Bookings must be made at least {required_minutes} minutes in advance",
            code="INSUFFICIENT_TIME",
            details={
                "required_minutes": required_minutes,
                "provided_minutes": round(provided_minutes, 1),
            },
        )


class BookingWindowExceededException(BusinessRuleException):
    """Raised when a booking starts beyond the universal booking window."""

    def __init__(self, max_days: int, max_allowed_date: str):
        super().__init__(
            message=f"Reservas podem ser feitas com no máximo {max_days} dias de antecedência",
            code="BOOKING_WINDOW_EXCEEDED",
            details={"max_days": max_days, "max_allowed_date": max_allowed_date},
        )


class OutsideBusinessHoursException(BusinessRuleException):
    """Raised when a booking falls outside opening hours."""

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "Booking is outside business hours",
            code="BOOKING_OUTSIDE_HOURS",
            details=details or {},
        )


class TurnoProtectionException(BusinessRuleException):
    """Raised when an hourly purchase targets a protected shift day."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="TURNO_PROTECTION_30D", details=details or {})


# Credits


class InsufficientCreditsException(ValidationException):
    """Raised when eligible credits cannot cover the required amount."""

    def __init__(self, available_cents: int, required_cents: int):
        super().__init__(
            message="Insufficient credit balance",
            code="INSUFFICIENT_CREDITS",
            details={"available_cents": available_cents, "required_cents": required_cents},
        )
        self.available_cents = available_cents
        self.required_cents = required_cents


class CreditConsumedByAnotherException(ConflictException):
    """Raised when a conditional decrement lost the race for a credit."""

    def __init__(self, credit_id: str):
        super().__init__(
            message="Credit was consumed by another request, please try again",
            code="CREDIT_CONSUMED_BY_ANOTHER",
            details={"credit_id": credit_id},
        )
        self.credit_id = credit_id


class PartialConsumptionException(ConflictException):
    """Raised when real-time allocation covered less than the pre-check promised."""

    def __init__(self, consumed_cents: int, expected_cents: int):
        super().__init__(
            message="Credit balance changed while booking, please try again",
            code="PARTIAL_CONSUMPTION",
            details={"consumed_cents": consumed_cents, "expected_cents": expected_cents},
        )
        self.consumed_cents = consumed_cents
        self.expected_cents = expected_cents


class CreditUsageException(ValidationException):
    """Raised when a credit's usage type does not fit the booking shape."""

    def __init__(self, code: str, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code=code, details=details or {})


# Coupons


class CouponInvalidException(ValidationException):
    def __init__(self, coupon_code: str):
        super().__init__(
            message="Cupom inválido",
            code="COUPON_INVALID",
            details={"coupon_code": coupon_code},
        )


class CouponAlreadyUsedException(ConflictException):
    def __init__(self, coupon_code: str):
        super().__init__(
            message="Este cupom já foi utilizado",
            code="COUPON_ALREADY_USED",
            details={"coupon_code": coupon_code},
        )


class CouponRequiresCashPaymentException(BusinessRuleException):
    def __init__(self, coupon_code: str):
        super().__init__(
            message="Cupons só podem ser usados quando há valor a pagar",
            code="COUPON_REQUIRES_CASH_PAYMENT",
            details={"coupon_code": coupon_code},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues or query failures.
    """
