"""Validation of parsed payments against merchant rules."""

from .validator import PaymentValidator, validate_payment

__all__ = ["PaymentValidator", "validate_payment"]
