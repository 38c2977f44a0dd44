"""SQLite-backed store for orders, verification records and bank templates.

This is the local stand-in for the hosted database: it keeps the columns the
verifier reads and writes, and publishes order changes so push-mode observers
see them.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from upi_payment_verifier.exceptions import OrderNotFoundError, RepositoryError
from upi_payment_verifier.models import (
    BankTemplate,
    OrderRecord,
    OrderStatus,
    PaymentVerificationRecord,
    VerificationStatus,
)
from upi_payment_verifier.store.changes import OrderChangeFeed

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_ORDER_COLUMNS = tuple(OrderRecord.model_fields)
_VERIFICATION_COLUMNS = tuple(PaymentVerificationRecord.model_fields)
_OPEN_ORDER_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class VerificationRepository:
    """Repository for orders and payment verification records."""

    def __init__(self, db_path: Path, change_feed: OrderChangeFeed | None = None) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
            change_feed: Optional feed notified after every order write.
        """

        self._db_path = db_path
        self.change_feed = change_feed

    def initialize(self) -> None:
        """Create the schema if needed and check its version."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("verification_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise RepositoryError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # Orders

    def upsert_order(self, order: OrderRecord) -> OrderRecord:
        """Insert or replace an order and publish its status fields."""

        params = order.model_dump(mode="json")
        params["updated_at"] = _now_iso()
        columns = ", ".join(_ORDER_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in _ORDER_COLUMNS)
        updates = ", ".join(f"{c}=excluded.{c}" for c in _ORDER_COLUMNS if c != "id")

        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO orders ({columns}, updated_at)
                VALUES ({placeholders}, :updated_at)
                ON CONFLICT(id) DO UPDATE SET {updates}, updated_at=excluded.updated_at
                """,
                params,
            )
            conn.commit()

        self._publish(order)
        return order

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_order(row) if row is not None else None

    def get_order_status_fields(self, order_id: str) -> Optional[dict[str, Any]]:
        """Return the payment status columns of an order, or None if unknown."""

        order = self.get_order(order_id)
        return order.status_fields() if order is not None else None

    def list_unconfirmed_orders(self) -> list[OrderRecord]:
        """Orders still awaiting payment, newest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM orders
                WHERE status IN (?, ?) AND payment_confirmed = 0
                ORDER BY created_at DESC
                """,
                _OPEN_ORDER_STATUSES,
            ).fetchall()
        return [self._row_to_order(row) for row in rows]

    def confirm_order_payment(self, order_id: str, verification_id: str) -> bool:
        """Mark an open order as paid by an automatic verification.

        Returns False (and changes nothing) unless the order is pending or
        processing and not yet confirmed.

        Raises:
            OrderNotFoundError: If the order does not exist.
        """

        now_iso = _now_iso()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE orders
                SET status = ?,
                    payment_confirmed = 1,
                    payment_confirmed_at = ?,
                    payment_verification_id = ?,
                    auto_verified = 1,
                    updated_at = ?
                WHERE id = ? AND status IN (?, ?) AND payment_confirmed = 0
                """,
                (OrderStatus.PAID.value, now_iso, verification_id, now_iso, order_id)
                + _OPEN_ORDER_STATUSES,
            )
            conn.commit()
            updated = cursor.rowcount > 0

        order = self.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if updated:
            logger.info("order_payment_confirmed", order_id=order_id, verification_id=verification_id)
            self._publish(order)
        return updated

    # Verification records

    def create_verification(self, record: PaymentVerificationRecord) -> PaymentVerificationRecord:
        """Persist a new verification record.

        Raises:
            RepositoryError: If a record for the same email message already exists.
        """

        columns = ", ".join(_VERIFICATION_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in _VERIFICATION_COLUMNS)
        params = record.model_dump(mode="json")
        params["updated_at"] = _now_iso()

        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO payment_verifications ({columns}, updated_at)
                    VALUES ({placeholders}, :updated_at)
                    """,
                    params,
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(f"Could not create verification record: {exc}") from exc

        logger.info(
            "verification_record_created",
            verification_id=record.id,
            status=record.verification_status.value,
        )
        return record

    def update_verification(self, verification_id: str, **changes: Any) -> PaymentVerificationRecord:
        """Apply field changes to a verification record and return the result."""

        current = self.get_verification(verification_id)
        if current is None:
            raise RepositoryError(f"Verification record not found: {verification_id}")

        updated = PaymentVerificationRecord.model_validate({**current.model_dump(), **changes})
        params = updated.model_dump(mode="json")
        params["updated_at"] = _now_iso()
        assignments = ", ".join(f"{c} = :{c}" for c in _VERIFICATION_COLUMNS if c != "id")

        with self._connect() as conn:
            conn.execute(
                f"UPDATE payment_verifications SET {assignments}, updated_at = :updated_at WHERE id = :id",
                params,
            )
            conn.commit()
        return updated

    def get_verification(self, verification_id: str) -> Optional[PaymentVerificationRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM payment_verifications WHERE id = ?", (verification_id,)
            ).fetchone()
        return self._row_to_verification(row) if row is not None else None

    def find_verification_by_message_id(self, message_id: str) -> Optional[PaymentVerificationRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM payment_verifications WHERE email_message_id = ?", (message_id,)
            ).fetchone()
        return self._row_to_verification(row) if row is not None else None

    def list_order_verifications(self, order_id: str) -> list[PaymentVerificationRecord]:
        """All verification records linked to an order, newest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM payment_verifications
                WHERE order_id = ?
                ORDER BY created_at DESC
                """,
                (order_id,),
            ).fetchall()
        return [self._row_to_verification(row) for row in rows]

    def has_verified_reference(self, upi_reference: str) -> bool:
        return self._has_verified("upi_reference", upi_reference)

    def has_verified_transaction(self, transaction_id: str) -> bool:
        return self._has_verified("transaction_id", transaction_id)

    def verification_status_counts(self) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT verification_status, COUNT(*)
                FROM payment_verifications
                GROUP BY verification_status
                """
            ).fetchall()
        return {row[0]: int(row[1]) for row in rows}

    # Bank templates

    def save_templates(self, templates: Iterable[BankTemplate]) -> int:
        """Upsert templates keyed by bank name and sender domain."""

        now_iso = _now_iso()
        rows = [
            {
                "bank_name": t.bank_name,
                "email_domain": t.email_domain_filter,
                "subject_pattern": t.subject_pattern,
                "amount_pattern": t.amount_pattern,
                "reference_pattern": t.reference_pattern,
                "sender_vpa_pattern": t.sender_id_pattern,
                "receiver_vpa_pattern": t.receiver_id_pattern,
                "transaction_id_pattern": t.transaction_id_pattern,
                "priority": t.priority,
                "updated_at": now_iso,
            }
            for t in templates
        ]
        if not rows:
            return 0

        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO bank_email_templates (
                    bank_name,
                    email_domain,
                    subject_pattern,
                    amount_pattern,
                    reference_pattern,
                    sender_vpa_pattern,
                    receiver_vpa_pattern,
                    transaction_id_pattern,
                    priority,
                    is_active,
                    updated_at
                )
                VALUES (
                    :bank_name,
                    :email_domain,
                    :subject_pattern,
                    :amount_pattern,
                    :reference_pattern,
                    :sender_vpa_pattern,
                    :receiver_vpa_pattern,
                    :transaction_id_pattern,
                    :priority,
                    1,
                    :updated_at
                )
                ON CONFLICT(bank_name, email_domain) DO UPDATE SET
                    subject_pattern=excluded.subject_pattern,
                    amount_pattern=excluded.amount_pattern,
                    reference_pattern=excluded.reference_pattern,
                    sender_vpa_pattern=excluded.sender_vpa_pattern,
                    receiver_vpa_pattern=excluded.receiver_vpa_pattern,
                    transaction_id_pattern=excluded.transaction_id_pattern,
                    priority=excluded.priority,
                    is_active=1,
                    updated_at=excluded.updated_at
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    def list_active_template_records(self) -> list[dict[str, Any]]:
        """Active template rows, highest priority first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM bank_email_templates
                WHERE is_active = 1
                ORDER BY priority DESC, id ASC
                """
            ).fetchall()
        return [dict(row) for row in rows]

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def _has_verified(self, column: str, value: str) -> bool:
        if not value:
            return False
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT 1 FROM payment_verifications
                WHERE {column} = ? AND verification_status = ?
                LIMIT 1
                """,
                (value, VerificationStatus.VERIFIED.value),
            ).fetchone()
        return row is not None

    def _publish(self, order: OrderRecord) -> None:
        if self.change_feed is not None:
            self.change_feed.publish(order.status_fields())

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                transaction_id TEXT,
                total TEXT NOT NULL,
                status TEXT NOT NULL,
                payment_confirmed INTEGER NOT NULL DEFAULT 0,
                auto_verified INTEGER NOT NULL DEFAULT 0,
                payment_verification_id TEXT,
                created_at TEXT NOT NULL,
                payment_confirmed_at TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_orders_transaction_id
                ON orders(transaction_id);

            CREATE TABLE IF NOT EXISTS payment_verifications (
                id TEXT PRIMARY KEY,
                transaction_id TEXT NOT NULL,
                order_id TEXT REFERENCES orders(id) ON DELETE SET NULL,
                email_message_id TEXT UNIQUE,
                email_subject TEXT,
                email_from TEXT,
                email_received_at TEXT,
                bank_name TEXT,
                upi_reference TEXT,
                amount TEXT,
                sender_id TEXT,
                receiver_id TEXT,
                payment_timestamp TEXT,
                verification_status TEXT NOT NULL,
                verification_method TEXT NOT NULL,
                amount_match INTEGER,
                reference_match INTEGER,
                time_window_match INTEGER,
                confidence_score TEXT,
                parser_version TEXT NOT NULL,
                error_message TEXT,
                verified_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_payment_verifications_order
                ON payment_verifications(order_id);

            CREATE INDEX IF NOT EXISTS idx_payment_verifications_status
                ON payment_verifications(verification_status);

            CREATE INDEX IF NOT EXISTS idx_payment_verifications_upi_ref
                ON payment_verifications(upi_reference);

            CREATE TABLE IF NOT EXISTS bank_email_templates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                bank_name TEXT NOT NULL,
                email_domain TEXT NOT NULL,
                subject_pattern TEXT,
                amount_pattern TEXT NOT NULL,
                reference_pattern TEXT,
                sender_vpa_pattern TEXT,
                receiver_vpa_pattern TEXT,
                transaction_id_pattern TEXT,
                priority INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                updated_at TEXT NOT NULL,
                UNIQUE(bank_name, email_domain)
            );
            """
        )

    def _row_to_order(self, row: sqlite3.Row) -> OrderRecord:
        return OrderRecord.model_validate({c: row[c] for c in _ORDER_COLUMNS})

    def _row_to_verification(self, row: sqlite3.Row) -> PaymentVerificationRecord:
        return PaymentVerificationRecord.model_validate({c: row[c] for c in _VERIFICATION_COLUMNS})


class RepositoryOrderReader:
    """OrderReader over a VerificationRepository.

    sqlite3 is synchronous; reads run in a worker thread so polling does not
    block the event loop.
    """

    def __init__(self, repository: VerificationRepository) -> None:
        self.repository = repository

    async def read_order(self, order_id: str) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self.repository.get_order_status_fields, order_id)
