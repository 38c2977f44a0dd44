"""Data models for UPI Payment Verifier.

This module contains Pydantic models for data validation and serialization.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from upi_payment_verifier.models.bank_template import WILDCARD_DOMAIN, BankTemplate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationStatus(str, Enum):
    """Lifecycle state of a payment verification record."""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    MANUAL = "manual"


class VerificationMethod(str, Enum):
    """How a verification record was produced."""

    EMAIL_PARSE = "email_parse"
    MANUAL = "manual"
    API = "api"
    WEBHOOK = "webhook"


class OrderStatus(str, Enum):
    """Order states visible to payment status observers."""

    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class EmailMessage(BaseModel):
    """Inbound payment notification email."""

    model_config = ConfigDict(frozen=True)

    subject: str = Field(default="", description="Email subject")
    body: str = Field(default="", description="Plain-text email body")
    from_address: str = Field(default="", description="Sender address (may include display name)")
    received_at: datetime = Field(description="When the email was received")
    message_id: Optional[str] = Field(
        default=None, description="Mailbox message ID, used to detect re-delivered emails"
    )


class ParsedPayment(BaseModel):
    """Payment facts extracted from an email by a bank template."""

    model_config = ConfigDict(frozen=True)

    bank_name: str = Field(description="Name of the template that matched")
    amount: Decimal = Field(description="Paid amount in rupees")
    upi_reference: str = Field(default="", description="UPI reference / RRN")
    sender_id: str = Field(default="", description="Payer VPA")
    receiver_id: str = Field(default="", description="Payee VPA")
    timestamp: datetime = Field(description="Copied from the email's received_at")
    transaction_id: Optional[str] = Field(
        default=None, description="Merchant transaction id found in the email, if configured"
    )


class ValidationResult(BaseModel):
    """Outcome of checking a parsed payment against business rules."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool = Field(description="True when no rule failed")
    errors: list[str] = Field(default_factory=list, description="Human-readable rule failures")


class OrderPaymentStatus(BaseModel):
    """Full snapshot of an order's payment state delivered to observers."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    status: OrderStatus
    payment_confirmed: bool = False
    auto_verified: bool = False
    verification_id: Optional[str] = None

    @classmethod
    def from_order_fields(cls, fields: Mapping[str, Any]) -> "OrderPaymentStatus":
        """Build a snapshot from raw order columns.

        Expects the `id, status, payment_confirmed, auto_verified,
        payment_verification_id` columns of an order record.
        """

        return cls(
            order_id=str(fields["id"]),
            status=fields["status"],
            payment_confirmed=bool(fields.get("payment_confirmed")),
            auto_verified=bool(fields.get("auto_verified")),
            verification_id=fields.get("payment_verification_id"),
        )


class OrderRecord(BaseModel):
    """Order as held by the local store."""

    id: str
    transaction_id: Optional[str] = None
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_confirmed: bool = False
    auto_verified: bool = False
    payment_verification_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    payment_confirmed_at: Optional[datetime] = None

    def status_fields(self) -> dict[str, Any]:
        """Return the columns an order status reader exposes."""

        return {
            "id": self.id,
            "status": self.status.value,
            "payment_confirmed": self.payment_confirmed,
            "auto_verified": self.auto_verified,
            "payment_verification_id": self.payment_verification_id,
        }


class OrderMatch(BaseModel):
    """Most likely order for a parsed payment."""

    order_id: str
    confidence_score: Decimal = Field(ge=0, le=100)
    match_reason: str


class PaymentVerificationRecord(BaseModel):
    """Persisted outcome of verifying one payment email."""

    id: str
    transaction_id: str = ""
    order_id: Optional[str] = None

    email_message_id: Optional[str] = None
    email_subject: Optional[str] = None
    email_from: Optional[str] = None
    email_received_at: Optional[datetime] = None

    bank_name: Optional[str] = None
    upi_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    sender_id: Optional[str] = None
    receiver_id: Optional[str] = None
    payment_timestamp: Optional[datetime] = None

    verification_status: VerificationStatus = VerificationStatus.PENDING
    verification_method: VerificationMethod = VerificationMethod.EMAIL_PARSE

    amount_match: Optional[bool] = None
    reference_match: Optional[bool] = None
    time_window_match: Optional[bool] = None
    confidence_score: Optional[Decimal] = Field(default=None, ge=0, le=100)

    parser_version: str = "1.0.0"
    error_message: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)


class VerificationStats(BaseModel):
    """Aggregate counts over all verification records."""

    total: int = 0
    verified: int = 0
    pending: int = 0
    failed: int = 0
    success_rate: float = Field(default=0.0, description="Verified share of total, in percent")


__all__ = [
    "WILDCARD_DOMAIN",
    "BankTemplate",
    "EmailMessage",
    "OrderMatch",
    "OrderPaymentStatus",
    "OrderRecord",
    "OrderStatus",
    "ParsedPayment",
    "PaymentVerificationRecord",
    "ValidationResult",
    "VerificationMethod",
    "VerificationStats",
    "VerificationStatus",
]
