"""Bank template registry.

The registry holds extraction rules ordered by descending priority. It is
built once (from defaults, a JSON file or persisted rows) and never changed;
reloading configuration means building a new registry.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from upi_payment_verifier.exceptions import TemplateConfigurationError
from upi_payment_verifier.models import BankTemplate

logger = structlog.get_logger()

_VPA = r"([a-zA-Z0-9._-]+@[a-zA-Z0-9._-]+)"
_RUPEES = r"₹\s*([0-9,]+(?:\.[0-9]{2})?)"

DEFAULT_BANK_TEMPLATES: tuple[BankTemplate, ...] = (
    BankTemplate(
        bank_name="PhonePe",
        email_domain_filter="phonepe.com",
        subject_pattern="Payment Successful|Money Sent",
        amount_pattern=_RUPEES,
        reference_pattern=r"UPI Ref[:\s]+([A-Z0-9]+)",
        sender_id_pattern=r"From[:\s]+" + _VPA,
        receiver_id_pattern=r"To[:\s]+" + _VPA,
        transaction_id_pattern=r"TXN[0-9]{8}",
        priority=10,
    ),
    BankTemplate(
        bank_name="Google Pay",
        email_domain_filter="google.com",
        subject_pattern="You sent ₹|Payment to",
        amount_pattern=_RUPEES,
        reference_pattern=r"UPI transaction ID[:\s]+([A-Z0-9]+)",
        sender_id_pattern=r"From[:\s]+" + _VPA,
        receiver_id_pattern=r"To[:\s]+" + _VPA,
        transaction_id_pattern=r"TXN[0-9]{8}",
        priority=10,
    ),
    BankTemplate(
        bank_name="Paytm",
        email_domain_filter="paytm.com",
        subject_pattern="Payment Successful|Money Transferred",
        amount_pattern=_RUPEES,
        reference_pattern=r"Transaction ID[:\s]+([A-Z0-9]+)",
        sender_id_pattern=r"From[:\s]+" + _VPA,
        receiver_id_pattern=r"To[:\s]+" + _VPA,
        transaction_id_pattern=r"TXN[0-9]{8}",
        priority=9,
    ),
    BankTemplate(
        bank_name="BHIM",
        email_domain_filter="npci.org.in",
        subject_pattern="Transaction Successful|Payment Confirmation",
        amount_pattern=_RUPEES,
        reference_pattern=r"RRN[:\s]+([A-Z0-9]+)",
        sender_id_pattern=r"Payer VPA[:\s]+" + _VPA,
        receiver_id_pattern=r"Payee VPA[:\s]+" + _VPA,
        transaction_id_pattern=r"TXN[0-9]{8}",
        priority=8,
    ),
    BankTemplate(
        bank_name="Generic UPI",
        email_domain_filter="*",
        subject_pattern="UPI|Payment|Transaction",
        amount_pattern=_RUPEES + r"|Rs\.?\s*([0-9,]+(?:\.[0-9]{2})?)",
        reference_pattern=(
            r"Reference[:\s]+([A-Z0-9]+)|Ref[:\s]+([A-Z0-9]+)|RRN[:\s]+([A-Z0-9]+)"
        ),
        sender_id_pattern=r"From[:\s]+" + _VPA + r"|Payer[:\s]+" + _VPA,
        receiver_id_pattern=r"To[:\s]+" + _VPA + r"|Payee[:\s]+" + _VPA,
        transaction_id_pattern=r"TXN[0-9]{8}",
        priority=1,
    ),
)


class TemplateRegistry:
    """Immutable, priority-ordered collection of bank templates."""

    def __init__(self, templates: Iterable[BankTemplate]) -> None:
        # sorted() is stable, so equal priorities keep their input order.
        self._templates: tuple[BankTemplate, ...] = tuple(
            sorted(templates, key=lambda t: t.priority, reverse=True)
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        *,
        strict: bool = False,
    ) -> "TemplateRegistry":
        """Build a registry from persisted template rows or JSON objects.

        Rows flagged `is_active = false` are skipped. Malformed rows are logged
        and dropped, or raise TemplateConfigurationError when `strict` is set.
        """

        templates: list[BankTemplate] = []
        for index, record in enumerate(records):
            if not record.get("is_active", True):
                continue
            try:
                templates.append(BankTemplate.model_validate(dict(record)))
            except ValidationError as exc:
                if strict:
                    raise TemplateConfigurationError(
                        f"Invalid bank template at position {index}: {exc}"
                    ) from exc
                logger.warning(
                    "bank_template_rejected",
                    position=index,
                    bank_name=record.get("bank_name"),
                    error=str(exc),
                )
        return cls(templates)

    @property
    def templates(self) -> tuple[BankTemplate, ...]:
        return self._templates

    def domains(self) -> list[str]:
        """Return the sender domains of all non-wildcard templates, in order."""

        seen: dict[str, None] = {}
        for template in self._templates:
            if not template.is_wildcard:
                seen.setdefault(template.email_domain_filter.lower(), None)
        return list(seen)

    def __iter__(self) -> Iterator[BankTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)


def default_registry() -> TemplateRegistry:
    """Registry built from the bundled provider templates."""

    return TemplateRegistry(DEFAULT_BANK_TEMPLATES)


def load_templates_file(path: Path, *, strict: bool = True) -> TemplateRegistry:
    """Load a registry from a JSON file containing a list of template objects.

    Raises:
        TemplateConfigurationError: If the file is missing or not a JSON list.
    """

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise TemplateConfigurationError(f"Template file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise TemplateConfigurationError(f"Template file is not valid JSON: {path}") from exc

    if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
        raise TemplateConfigurationError(f"Template file must contain a list of objects: {path}")

    registry = TemplateRegistry.from_records(raw, strict=strict)
    logger.info("bank_templates_loaded", path=str(path), template_count=len(registry))
    return registry
