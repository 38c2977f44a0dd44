"""Helpers for turning Gmail API messages into payment emails."""

from __future__ import annotations

import base64
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from bs4 import BeautifulSoup

from upi_payment_verifier.models import EmailMessage

PAYMENT_SUBJECT_TERMS = ("payment", "transaction", "successful", "credited", "sent", "paid")


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first.
            result.setdefault(name.lower(), value)
    return result


def _decode_b64(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    raw = base64.urlsafe_b64decode(padded.encode("utf-8"))
    return raw.decode("utf-8", errors="replace")


def _collect_parts(part: dict[str, Any], mime_prefix: str) -> list[str]:
    mime = (part.get("mimeType") or "").lower()
    data = (part.get("body") or {}).get("data")
    if data and mime.startswith(mime_prefix):
        return [_decode_b64(data)]

    texts: list[str] = []
    for p in part.get("parts") or []:
        texts.extend(_collect_parts(p, mime_prefix))
    return texts


def html_to_text(html: str) -> str:
    """Strip markup, keeping one line per block of visible text."""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def extract_body_text(message: dict[str, Any]) -> str:
    """Best-effort text body: text/plain parts, else HTML parts stripped to text."""

    payload = message.get("payload") or {}

    plain = _collect_parts(payload, "text/plain")
    if plain:
        return "\n\n".join(plain).strip()

    html = _collect_parts(payload, "text/html")
    if html:
        return "\n\n".join(html_to_text(h) for h in html).strip()

    return (message.get("snippet") or "").strip()


def _received_at(message: dict[str, Any], date_header: str | None) -> datetime:
    internal_date_raw = message.get("internalDate")
    try:
        if internal_date_raw is not None:
            return datetime.fromtimestamp(int(internal_date_raw) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        pass

    if date_header:
        try:
            return parsedate_to_datetime(date_header)
        except (TypeError, ValueError, OverflowError):
            pass

    return datetime.now(timezone.utc)


def message_to_email_message(message: dict[str, Any]) -> EmailMessage:
    """Convert a Gmail API message (format=full) to EmailMessage.

    Args:
        message: Gmail API message dict.

    Returns:
        EmailMessage: Subject, sender, body text and receive time. The Gmail
        message id becomes `message_id` so re-fetched emails are recognised.
    """

    hm = _header_map(message)

    return EmailMessage(
        subject=hm.get("subject") or "",
        body=extract_body_text(message),
        from_address=hm.get("from") or "",
        received_at=_received_at(message, hm.get("date")),
        message_id=str(message.get("id") or "") or None,
    )


def build_payment_search_query(
    domains: Iterable[str],
    newer_than_minutes: int,
    *,
    now: datetime | None = None,
) -> str:
    """Gmail search query for recent payment notifications from `domains`.

    Gmail's `newer_than:` only understands days, months and years, so the
    window is expressed as an `after:` epoch-seconds bound instead.
    """

    senders = " OR ".join(sorted({d.lower() for d in domains if d}))
    subjects = " OR ".join(PAYMENT_SUBJECT_TERMS)

    parts = []
    if senders:
        parts.append(f"from:({senders})")
    parts.append(f"subject:({subjects})")
    since = (now or datetime.now(timezone.utc)) - timedelta(minutes=newer_than_minutes)
    parts.append(f"after:{int(since.timestamp())}")
    return " ".join(parts)
