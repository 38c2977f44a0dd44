"""Gmail ingestion of payment notification emails."""

from .client import GmailClient
from .parsing import build_payment_search_query, extract_body_text, message_to_email_message

__all__ = [
    "GmailClient",
    "build_payment_search_query",
    "extract_body_text",
    "message_to_email_message",
]
