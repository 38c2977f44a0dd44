"""Unit tests for data models."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from upi_payment_verifier.models import (
    BankTemplate,
    EmailMessage,
    OrderPaymentStatus,
    OrderRecord,
    OrderStatus,
    PaymentVerificationRecord,
    VerificationStatus,
)


class TestBankTemplate:
    """Test suite for BankTemplate model."""

    def test_accepts_persisted_column_names(self) -> None:
        template = BankTemplate.model_validate(
            {
                "bank_name": "PhonePe",
                "email_domain": "phonepe.com",
                "amount_pattern": r"₹([0-9,.]+)",
                "sender_vpa_pattern": r"From: (\S+)",
                "receiver_vpa_pattern": r"To: (\S+)",
                "priority": 10,
                "is_active": 1,
            }
        )

        assert template.email_domain_filter == "phonepe.com"
        assert template.sender_id_pattern == r"From: (\S+)"
        assert template.receiver_id_pattern == r"To: (\S+)"

    def test_blank_optional_patterns_become_none(self) -> None:
        template = BankTemplate(
            bank_name="Bank",
            email_domain_filter="bank.test",
            amount_pattern=r"([0-9]+)",
            reference_pattern="  ",
            priority=1,
        )

        assert template.reference_pattern is None

    @pytest.mark.parametrize("field", ["bank_name", "email_domain_filter", "amount_pattern"])
    def test_required_fields_must_not_be_blank(self, field: str) -> None:
        data = {
            "bank_name": "Bank",
            "email_domain_filter": "bank.test",
            "amount_pattern": r"([0-9]+)",
            "priority": 1,
        }
        data[field] = " "

        with pytest.raises(ValidationError):
            BankTemplate(**data)

    def test_templates_are_immutable(self) -> None:
        template = BankTemplate(
            bank_name="Bank", email_domain_filter="bank.test", amount_pattern="x", priority=1
        )

        with pytest.raises(ValidationError):
            template.priority = 99  # type: ignore[misc]

    def test_accepts_sender(self) -> None:
        template = BankTemplate(
            bank_name="Paytm", email_domain_filter="paytm.com", amount_pattern="x", priority=1
        )
        wildcard = BankTemplate(
            bank_name="Any", email_domain_filter="*", amount_pattern="x", priority=1
        )

        assert template.accepts_sender("Paytm <alerts@PAYTM.com>")
        assert not template.accepts_sender("someone@unknown.test")
        assert wildcard.accepts_sender("")


class TestOrderModels:
    def test_status_snapshot_from_order_fields(self) -> None:
        snapshot = OrderPaymentStatus.from_order_fields(
            {
                "id": "order-1",
                "status": "paid",
                "payment_confirmed": 1,
                "auto_verified": True,
                "payment_verification_id": "ver-1",
            }
        )

        assert snapshot.order_id == "order-1"
        assert snapshot.status is OrderStatus.PAID
        assert snapshot.payment_confirmed is True
        assert snapshot.verification_id == "ver-1"

    def test_status_snapshot_rejects_missing_id(self) -> None:
        with pytest.raises(KeyError):
            OrderPaymentStatus.from_order_fields({"status": "pending"})

    def test_order_status_fields(self) -> None:
        order = OrderRecord(id="order-9", total=Decimal("10"))

        assert order.status_fields() == {
            "id": "order-9",
            "status": "pending",
            "payment_confirmed": False,
            "auto_verified": False,
            "payment_verification_id": None,
        }


def test_email_message_requires_received_at() -> None:
    with pytest.raises(ValidationError):
        EmailMessage(subject="s", body="b", from_address="a@b.c")  # type: ignore[call-arg]


def test_verification_record_defaults() -> None:
    record = PaymentVerificationRecord(
        id="ver-1",
        amount=Decimal("12.50"),
        payment_timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )

    assert record.verification_status is VerificationStatus.PENDING
    assert record.parser_version == "1.0.0"
    assert record.confidence_score is None
