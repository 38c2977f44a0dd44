"""Bank template model.

A template describes how one payment provider's confirmation emails encode the
amount, reference and identity fields. Templates are static configuration:
they are validated once when loaded and never modified afterwards.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

WILDCARD_DOMAIN = "*"


class BankTemplate(BaseModel):
    """Prioritized set of regular-expression rules for one provider."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    bank_name: str = Field(description="Provider name, e.g. PhonePe")
    email_domain_filter: str = Field(
        validation_alias=AliasChoices("email_domain_filter", "email_domain"),
        description="Substring the sender address must contain, or '*' for any sender",
    )
    subject_pattern: str | None = Field(
        default=None, description="Informational subject hint; not used for matching"
    )
    amount_pattern: str = Field(description="Regex whose first non-empty group is the amount")
    reference_pattern: str | None = Field(default=None, description="UPI reference regex")
    sender_id_pattern: str | None = Field(
        default=None,
        validation_alias=AliasChoices("sender_id_pattern", "sender_vpa_pattern"),
        description="Payer VPA regex",
    )
    receiver_id_pattern: str | None = Field(
        default=None,
        validation_alias=AliasChoices("receiver_id_pattern", "receiver_vpa_pattern"),
        description="Payee VPA regex",
    )
    transaction_id_pattern: str | None = Field(
        default=None, description="Regex locating the merchant's own transaction id"
    )
    priority: int = Field(description="Higher priorities are tried first")

    @field_validator("bank_name", "email_domain_filter")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @field_validator("amount_pattern")
    @classmethod
    def _require_pattern(cls, value: str) -> str:
        # Patterns are kept verbatim; surrounding whitespace can be significant.
        if not value.strip():
            raise ValueError("must be a non-empty pattern")
        return value

    @field_validator(
        "subject_pattern",
        "reference_pattern",
        "sender_id_pattern",
        "receiver_id_pattern",
        "transaction_id_pattern",
    )
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not str(value).strip():
            return None
        return value

    @property
    def is_wildcard(self) -> bool:
        return self.email_domain_filter == WILDCARD_DOMAIN

    def accepts_sender(self, from_address: str) -> bool:
        """Return True if this template applies to mail from `from_address`."""

        if self.is_wildcard:
            return True
        return self.email_domain_filter.lower() in (from_address or "").lower()
