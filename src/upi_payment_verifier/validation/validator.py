"""Business-rule validation for parsed payments.

Every rule is checked independently and contributes its own message, so
callers can decide between auto-verification, manual review and rejection
based on which rules failed.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from upi_payment_verifier.config import Settings
from upi_payment_verifier.models import ParsedPayment, ValidationResult
from upi_payment_verifier.utils import receiver_matches

DEFAULT_MIN_AMOUNT = Decimal("1")
DEFAULT_MAX_AMOUNT = Decimal("100000")
DEFAULT_MAX_AGE = timedelta(hours=1)
DEFAULT_RECEIVER_TOKEN = "hrejuh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PaymentValidator:
    """Checks a ParsedPayment against merchant constraints."""

    def __init__(
        self,
        *,
        min_amount: Decimal = DEFAULT_MIN_AMOUNT,
        max_amount: Decimal = DEFAULT_MAX_AMOUNT,
        expected_receiver_token: str = DEFAULT_RECEIVER_TOKEN,
        max_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.min_amount = Decimal(min_amount)
        self.max_amount = Decimal(max_amount)
        self.expected_receiver_token = expected_receiver_token
        self.max_age = max_age
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaymentValidator":
        return cls(
            min_amount=settings.min_amount,
            max_amount=settings.max_amount,
            expected_receiver_token=settings.expected_receiver_token,
            max_age=timedelta(seconds=settings.max_payment_age_seconds),
        )

    def validate(self, payment: ParsedPayment) -> ValidationResult:
        """Return every rule failure for `payment`; never raises."""

        errors: list[str] = []
        amount = payment.amount

        if not amount.is_finite() or amount <= 0:
            errors.append("Amount must be positive")

        if not amount.is_finite() or not (self.min_amount <= amount <= self.max_amount):
            errors.append(
                f"Amount outside reasonable range ({self.min_amount} to {self.max_amount})"
            )

        if payment.receiver_id and not receiver_matches(
            payment.receiver_id, self.expected_receiver_token
        ):
            errors.append("Receiver VPA does not match expected")

        oldest_allowed = _as_aware(self._clock()) - self.max_age
        if _as_aware(payment.timestamp) < oldest_allowed:
            errors.append("Payment timestamp too old")

        return ValidationResult(is_valid=not errors, errors=errors)


def validate_payment(payment: ParsedPayment) -> ValidationResult:
    """Validate with the default merchant rules."""

    return PaymentValidator().validate(payment)
