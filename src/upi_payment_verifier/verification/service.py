"""Payment verification service.

Takes one inbound email through parsing, validation, order matching and order
confirmation, recording the result as a PaymentVerificationRecord. The
disposition policy lives here, not in the validator: a payment failing any
rule is held for manual review rather than rejected.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from upi_payment_verifier.config import Settings
from upi_payment_verifier.exceptions import ManualVerificationUnsupportedError
from upi_payment_verifier.models import (
    EmailMessage,
    OrderMatch,
    ParsedPayment,
    PaymentVerificationRecord,
    ValidationResult,
    VerificationMethod,
    VerificationStats,
    VerificationStatus,
)
from upi_payment_verifier.parsing import EmailParser
from upi_payment_verifier.store import VerificationRepository
from upi_payment_verifier.templates import TemplateRegistry, default_registry, load_templates_file
from upi_payment_verifier.validation import PaymentValidator
from upi_payment_verifier.verification.matching import (
    AMOUNT_AND_TIME_MATCH,
    DEFAULT_CLOCK_SKEW,
    DEFAULT_AMOUNT_TOLERANCE,
    DEFAULT_TIME_WINDOW,
    EXACT_TRANSACTION_MATCH,
    find_matching_order,
)

PARSER_VERSION = "1.0.0"


class VerificationOutcome(BaseModel):
    """Result of processing one payment email."""

    status: Optional[VerificationStatus] = Field(
        description="Status of the resulting record; None when no template matched"
    )
    message: str
    payment: Optional[ParsedPayment] = None
    validation: Optional[ValidationResult] = None
    match: Optional[OrderMatch] = None
    record: Optional[PaymentVerificationRecord] = None

    @property
    def verified(self) -> bool:
        return self.status is VerificationStatus.VERIFIED


def resolve_registry(settings: Settings, repository: VerificationRepository | None = None) -> TemplateRegistry:
    """Pick templates: explicit file, then persisted rows, then built-in defaults."""

    if settings.templates_path is not None:
        return load_templates_file(settings.templates_path)
    if repository is not None:
        records = repository.list_active_template_records()
        if records:
            return TemplateRegistry.from_records(records)
    return default_registry()


class PaymentVerificationService:
    """Verifies UPI payments from emails against stored orders."""

    def __init__(
        self,
        repository: VerificationRepository,
        parser: EmailParser,
        validator: PaymentValidator,
        *,
        amount_tolerance: Decimal = DEFAULT_AMOUNT_TOLERANCE,
        time_window: timedelta = DEFAULT_TIME_WINDOW,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
        logger: Any | None = None,
    ) -> None:
        self.repository = repository
        self.parser = parser
        self.validator = validator
        self.amount_tolerance = amount_tolerance
        self.time_window = time_window
        self.clock_skew = clock_skew
        self._logger = logger or structlog.get_logger()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: VerificationRepository,
        registry: TemplateRegistry | None = None,
    ) -> "PaymentVerificationService":
        if registry is None:
            registry = resolve_registry(settings, repository)
        return cls(
            repository,
            EmailParser(registry, expected_receiver_token=settings.expected_receiver_token),
            PaymentValidator.from_settings(settings),
            amount_tolerance=settings.match_amount_tolerance,
            time_window=timedelta(minutes=settings.match_time_window_minutes),
            clock_skew=timedelta(seconds=settings.match_clock_skew_seconds),
        )

    def reload_templates(self, registry: TemplateRegistry) -> None:
        """Swap in a new template registry for subsequent emails."""

        self.parser = EmailParser(
            registry,
            expected_receiver_token=self.parser.expected_receiver_token,
            logger=self._logger,
        )
        self._logger.info("bank_templates_reloaded", template_count=len(registry))

    def process_email(self, email: EmailMessage) -> VerificationOutcome:
        """Parse, validate and match one payment email, persisting the result."""

        if email.message_id:
            existing = self.repository.find_verification_by_message_id(email.message_id)
            if existing is not None:
                self._logger.info(
                    "payment_email_already_processed",
                    message_id=email.message_id,
                    verification_id=existing.id,
                )
                return VerificationOutcome(
                    status=VerificationStatus.DUPLICATE,
                    message="Email already processed",
                    record=existing,
                )

        payment = self.parser.parse(email)
        if payment is None:
            return VerificationOutcome(status=None, message="Could not parse payment email")

        validation = self.validator.validate(payment)
        record = self._new_record(email, payment)

        if not validation.is_valid:
            record = self._store(
                record,
                VerificationStatus.MANUAL,
                error_message="; ".join(validation.errors),
            )
            self._logger.warning(
                "payment_held_for_review",
                verification_id=record.id,
                errors=validation.errors,
            )
            return VerificationOutcome(
                status=VerificationStatus.MANUAL,
                message="Payment held for manual review",
                payment=payment,
                validation=validation,
                record=record,
            )

        if payment.upi_reference and self.repository.has_verified_reference(payment.upi_reference):
            record = self._store(
                record,
                VerificationStatus.DUPLICATE,
                error_message="UPI reference already verified",
            )
            return VerificationOutcome(
                status=VerificationStatus.DUPLICATE,
                message="UPI reference already verified",
                payment=payment,
                validation=validation,
                record=record,
            )

        match = find_matching_order(
            payment,
            self.repository.list_unconfirmed_orders(),
            amount_tolerance=self.amount_tolerance,
            time_window=self.time_window,
            clock_skew=self.clock_skew,
        )
        if match is None:
            record = self._store(
                record, VerificationStatus.FAILED, error_message="No matching order found"
            )
            self._logger.info("payment_order_not_found", verification_id=record.id)
            return VerificationOutcome(
                status=VerificationStatus.FAILED,
                message="No matching order found",
                payment=payment,
                validation=validation,
                record=record,
            )

        return self._confirm(payment, validation, record, match)

    def get_verification(self, verification_id: str) -> Optional[PaymentVerificationRecord]:
        return self.repository.get_verification(verification_id)

    def get_order_verifications(self, order_id: str) -> list[PaymentVerificationRecord]:
        return self.repository.list_order_verifications(order_id)

    def check_verification_available(self, transaction_id: str) -> bool:
        """True if a verified record exists for the merchant transaction id."""

        return self.repository.has_verified_transaction(transaction_id)

    def get_verification_stats(self) -> VerificationStats:
        counts = self.repository.verification_status_counts()
        total = sum(counts.values())
        verified = counts.get(VerificationStatus.VERIFIED.value, 0)
        return VerificationStats(
            total=total,
            verified=verified,
            pending=counts.get(VerificationStatus.PENDING.value, 0),
            failed=counts.get(VerificationStatus.FAILED.value, 0),
            success_rate=(verified / total) * 100 if total else 0.0,
        )

    def manually_verify_payment(
        self,
        order_id: str,
        *,
        amount: Decimal,
        upi_reference: str,
        bank_name: str,
        notes: str | None = None,
    ) -> PaymentVerificationRecord:
        """Not available here; admins verify manually through the backend.

        Raises:
            ManualVerificationUnsupportedError: Always.
        """

        self._logger.warning("manual_verification_rejected", order_id=order_id)
        raise ManualVerificationUnsupportedError()

    def _confirm(
        self,
        payment: ParsedPayment,
        validation: ValidationResult,
        record: PaymentVerificationRecord,
        match: OrderMatch,
    ) -> VerificationOutcome:
        order = self.repository.get_order(match.order_id)
        amount_match = order is not None and abs(order.total - payment.amount) < self.amount_tolerance
        transaction_id = (order.transaction_id if order is not None else None) or record.transaction_id
        record = record.model_copy(
            update={
                "transaction_id": transaction_id,
                "order_id": match.order_id,
                "confidence_score": match.confidence_score,
                "amount_match": amount_match,
                "reference_match": match.match_reason == EXACT_TRANSACTION_MATCH,
                "time_window_match": match.match_reason == AMOUNT_AND_TIME_MATCH or None,
            }
        )
        record = self._store(record, VerificationStatus.PENDING)

        if not self.repository.confirm_order_payment(match.order_id, record.id):
            record = self.repository.update_verification(
                record.id,
                verification_status=VerificationStatus.FAILED,
                error_message="Order could not be confirmed",
            )
            return VerificationOutcome(
                status=VerificationStatus.FAILED,
                message="Order could not be confirmed",
                payment=payment,
                validation=validation,
                match=match,
                record=record,
            )

        record = self.repository.update_verification(
            record.id,
            verification_status=VerificationStatus.VERIFIED,
            verified_at=datetime.now(timezone.utc),
        )
        self._logger.info(
            "payment_verified",
            verification_id=record.id,
            order_id=match.order_id,
            confidence_score=str(match.confidence_score),
            match_reason=match.match_reason,
        )
        return VerificationOutcome(
            status=VerificationStatus.VERIFIED,
            message="Payment verified successfully",
            payment=payment,
            validation=validation,
            match=match,
            record=record,
        )

    def _new_record(self, email: EmailMessage, payment: ParsedPayment) -> PaymentVerificationRecord:
        return PaymentVerificationRecord(
            id=str(uuid.uuid4()),
            transaction_id=payment.transaction_id or "",
            email_message_id=email.message_id,
            email_subject=email.subject,
            email_from=email.from_address,
            email_received_at=email.received_at,
            bank_name=payment.bank_name,
            upi_reference=payment.upi_reference,
            amount=payment.amount,
            sender_id=payment.sender_id,
            receiver_id=payment.receiver_id,
            payment_timestamp=payment.timestamp,
            verification_method=VerificationMethod.EMAIL_PARSE,
            parser_version=PARSER_VERSION,
        )

    def _store(
        self,
        record: PaymentVerificationRecord,
        status: VerificationStatus,
        *,
        error_message: str | None = None,
    ) -> PaymentVerificationRecord:
        record = record.model_copy(
            update={"verification_status": status, "error_message": error_message}
        )
        return self.repository.create_verification(record)
