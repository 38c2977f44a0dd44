"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import structlog

from upi_payment_verifier.models import EmailMessage, OrderRecord, ParsedPayment

PHONEPE_BODY = """
Payment Successful
You paid ₹1,234.56
From: alice.k@okaxis
To: hrejuh@upi
UPI Ref: 123456789012
Order TXN12345678
"""


@pytest.fixture(autouse=True)
def _reset_structlog():
    """The CLI configures structlog globally; undo it between tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def mock_settings(tmp_path):
    """Provide settings pointing at a temporary database."""
    from upi_payment_verifier.config import Settings

    return Settings(
        db_path=tmp_path / "verifier.sqlite3",
        gmail_credentials_path=tmp_path / "missing-credentials.json",
        gmail_token_path=tmp_path / "token.json",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def make_email(now):
    """Factory for payment emails with PhonePe-style defaults."""

    def _make(
        *,
        subject: str = "Payment Successful",
        body: str = PHONEPE_BODY,
        from_address: str = "PhonePe <noreply@phonepe.com>",
        received_at: datetime | None = None,
        message_id: str | None = None,
    ) -> EmailMessage:
        return EmailMessage(
            subject=subject,
            body=body,
            from_address=from_address,
            received_at=received_at or now,
            message_id=message_id,
        )

    return _make


@pytest.fixture
def phonepe_email(make_email) -> EmailMessage:
    return make_email(message_id="gmail-1")


@pytest.fixture
def make_payment(now):
    def _make(**overrides) -> ParsedPayment:
        fields = {
            "bank_name": "PhonePe",
            "amount": Decimal("1234.56"),
            "upi_reference": "123456789012",
            "sender_id": "alice.k@okaxis",
            "receiver_id": "hrejuh@upi",
            "timestamp": now,
        }
        fields.update(overrides)
        return ParsedPayment(**fields)

    return _make


@pytest.fixture
def make_order(now):
    def _make(order_id: str = "order-1", **overrides) -> OrderRecord:
        fields = {
            "id": order_id,
            "total": Decimal("1234.56"),
            "created_at": now - timedelta(minutes=2),
        }
        fields.update(overrides)
        return OrderRecord(**fields)

    return _make


@pytest.fixture
def sample_gmail_message() -> dict:
    """Gmail API message (format=full) with a base64url text/plain part."""
    import base64

    body = base64.urlsafe_b64encode(PHONEPE_BODY.encode("utf-8")).decode("ascii").rstrip("=")
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "internalDate": "1700000000000",
        "snippet": "Payment Successful",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "Payment Successful"},
                {"name": "From", "value": "PhonePe <noreply@phonepe.com>"},
                {"name": "To", "value": "merchant@example.com"},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": body}},
                {
                    "mimeType": "text/html",
                    "body": {
                        "data": base64.urlsafe_b64encode(b"<p>ignored</p>").decode("ascii")
                    },
                },
            ],
        },
    }
