"""Email parser for UPI payment confirmations.

Templates are tried in registry order and the first one that yields a valid
amount wins; later templates are never inspected. A mismatching receiver is
only logged here; the validator rejects it later.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from upi_payment_verifier.models import BankTemplate, EmailMessage, ParsedPayment
from upi_payment_verifier.parsing.extraction import parse_amount, search_field
from upi_payment_verifier.templates import TemplateRegistry
from upi_payment_verifier.utils import receiver_matches


class EmailParser:
    """Extracts a ParsedPayment from a bank notification email."""

    def __init__(
        self,
        registry: TemplateRegistry,
        *,
        expected_receiver_token: str | None = None,
        logger: Any | None = None,
    ) -> None:
        """Create a parser.

        Args:
            registry: Templates to try, already priority-ordered.
            expected_receiver_token: If set, receivers not containing it are
                logged as a caution (never rejected at this stage).
            logger: structlog-compatible logger; defaults to the module logger.
        """

        self.registry = registry
        self.expected_receiver_token = expected_receiver_token
        self._logger = logger or structlog.get_logger()

    def parse(self, email: EmailMessage) -> ParsedPayment | None:
        """Return the first template match for `email`, or None."""

        text = f"{email.subject}\n{email.body}"

        for template in self.registry:
            if not template.accepts_sender(email.from_address):
                continue

            parsed = self._parse_with_template(text, email, template)
            if parsed is not None:
                self._logger.info(
                    "email_parsed",
                    bank_name=parsed.bank_name,
                    amount=str(parsed.amount),
                    message_id=email.message_id,
                )
                return parsed

        self._logger.info(
            "email_unmatched",
            from_address=email.from_address,
            message_id=email.message_id,
            template_count=len(self.registry),
        )
        return None

    def _parse_with_template(
        self,
        text: str,
        email: EmailMessage,
        template: BankTemplate,
    ) -> ParsedPayment | None:
        raw_amount = self._extract(text, template, "amount_pattern")
        if raw_amount is None:
            return None

        amount = parse_amount(raw_amount)
        if amount is None:
            self._logger.debug(
                "template_amount_unusable",
                bank_name=template.bank_name,
                raw_amount=raw_amount,
            )
            return None

        upi_reference = self._extract(text, template, "reference_pattern") or ""
        sender_id = self._extract(text, template, "sender_id_pattern") or ""
        receiver_id = self._extract(text, template, "receiver_id_pattern") or ""

        transaction_id: str | None = None
        if template.transaction_id_pattern is not None:
            transaction_id = self._extract(text, template, "transaction_id_pattern") or ""

        if (
            receiver_id
            and self.expected_receiver_token
            and not receiver_matches(receiver_id, self.expected_receiver_token)
        ):
            self._logger.warning(
                "receiver_identity_mismatch",
                bank_name=template.bank_name,
                receiver_id=receiver_id,
                expected=self.expected_receiver_token,
            )

        return ParsedPayment(
            bank_name=template.bank_name,
            amount=amount,
            upi_reference=upi_reference,
            sender_id=sender_id,
            receiver_id=receiver_id,
            timestamp=email.received_at,
            transaction_id=transaction_id,
        )

    def _extract(self, text: str, template: BankTemplate, field: str) -> str | None:
        pattern = getattr(template, field)
        if pattern is None:
            return None
        try:
            return search_field(text, pattern)
        except re.error as exc:
            self._logger.warning(
                "template_pattern_invalid",
                bank_name=template.bank_name,
                field=field,
                pattern=pattern,
                error=str(exc),
            )
            return None
