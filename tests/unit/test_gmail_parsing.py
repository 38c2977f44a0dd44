"""Unit tests for Gmail message parsing helpers."""

import base64
from datetime import datetime, timezone

from upi_payment_verifier.gmail.parsing import (
    PAYMENT_SUBJECT_TERMS,
    build_payment_search_query,
    extract_body_text,
    message_to_email_message,
)
from upi_payment_verifier.parsing import EmailParser
from upi_payment_verifier.templates import default_registry


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def test_message_to_email_message_parses_basic_fields(sample_gmail_message) -> None:
    email = message_to_email_message(sample_gmail_message)

    assert email.message_id == "msg123456"
    assert email.subject == "Payment Successful"
    assert email.from_address == "PhonePe <noreply@phonepe.com>"
    assert email.received_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert "UPI Ref: 123456789012" in email.body
    assert "ignored" not in email.body


def test_converted_message_parses_as_payment(sample_gmail_message) -> None:
    payment = EmailParser(default_registry()).parse(message_to_email_message(sample_gmail_message))

    assert payment is not None
    assert payment.bank_name == "PhonePe"


def test_html_only_body_is_stripped() -> None:
    message = {
        "payload": {
            "mimeType": "text/html",
            "body": {
                "data": _b64(
                    "<html><style>p {color: red}</style><body>"
                    "<p>Paid <b>₹250.00</b></p><p>UPI Ref: 998877</p></body></html>"
                )
            },
        }
    }

    body = extract_body_text(message)

    assert "₹250.00" in body
    assert "UPI Ref: 998877" in body
    assert "<p>" not in body
    assert "color" not in body


def test_body_falls_back_to_snippet() -> None:
    assert extract_body_text({"snippet": " You paid ₹10 ", "payload": {}}) == "You paid ₹10"


def test_date_header_used_without_internal_date() -> None:
    message = {
        "id": "m1",
        "payload": {
            "headers": [
                {"name": "Date", "value": "Mon, 02 Jun 2025 10:30:00 +0000"},
                {"name": "Subject", "value": "first"},
                {"name": "subject", "value": "second"},
            ]
        },
    }

    email = message_to_email_message(message)

    assert email.received_at == datetime(2025, 6, 2, 10, 30, tzinfo=timezone.utc)
    assert email.subject == "first"


def test_build_payment_search_query() -> None:
    now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    query = build_payment_search_query(["paytm.com", "PhonePe.com", "paytm.com"], 5, now=now)

    expected_after = int(datetime(2025, 6, 1, 11, 55, tzinfo=timezone.utc).timestamp())
    assert query == (
        "from:(paytm.com OR phonepe.com) "
        "subject:(payment OR transaction OR successful OR credited OR sent OR paid) "
        f"after:{expected_after}"
    )


def test_build_payment_search_query_without_domains() -> None:
    query = build_payment_search_query([], 10)

    assert not query.startswith("from:")
    assert query.startswith("subject:(")


def test_subject_terms_cover_every_default_template() -> None:
    for template in default_registry():
        hint = (template.subject_pattern or "").lower()
        assert any(term in hint for term in PAYMENT_SUBJECT_TERMS), template.bank_name


def test_build_payment_search_query_finds_google_pay_sent_subjects() -> None:
    query = build_payment_search_query(["okaxis.com"], 5)

    assert "sent" in query.split("subject:(")[1].split(")")[0].split(" OR ")
