"""Command-line interface for UPI Payment Verifier.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

import structlog
from pydantic import ValidationError

from upi_payment_verifier import __version__
from upi_payment_verifier.bridge import BridgeMode, OrderStatusBridge, WatchOutcome
from upi_payment_verifier.config import Settings, get_settings
from upi_payment_verifier.exceptions import VerifierError
from upi_payment_verifier.gmail import GmailClient
from upi_payment_verifier.models import EmailMessage, OrderPaymentStatus, OrderRecord, OrderStatus
from upi_payment_verifier.store import RepositoryOrderReader, VerificationRepository
from upi_payment_verifier.templates import load_templates_file
from upi_payment_verifier.verification import (
    PaymentVerificationService,
    VerificationOutcome,
    resolve_registry,
)

logger = structlog.get_logger()


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a decimal amount: {value}") from exc


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return number


def _positive_float(value: str) -> float:
    number = float(value)
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0: {value}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="upi-verifier", description="UPI payment email verifier")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings db_path)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Templates
    templates_parser = subparsers.add_parser("templates", help="Inspect and store bank templates")
    templates_sub = templates_parser.add_subparsers(dest="templates_command", required=True)
    templates_sub.add_parser("list", help="Show the active templates in priority order")
    import_parser = templates_sub.add_parser("import", help="Store templates from a JSON file")
    import_parser.add_argument("file", type=Path, help="JSON list of template objects")

    # Emails
    parse_parser = subparsers.add_parser("parse", help="Parse and validate an email JSON file")
    parse_parser.add_argument("file", type=Path)

    verify_parser = subparsers.add_parser("verify", help="Verify an email JSON file against orders")
    verify_parser.add_argument("file", type=Path)

    sync_parser = subparsers.add_parser("sync", help="Fetch recent payment emails from Gmail and verify them")
    sync_parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Search window in minutes (default: settings gmail_search_window_minutes)",
    )
    sync_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of emails to fetch (default: settings gmail_max_results)",
    )

    # Orders
    orders_parser = subparsers.add_parser("orders", help="Manage local orders")
    orders_sub = orders_parser.add_subparsers(dest="orders_command", required=True)
    add_parser = orders_sub.add_parser("add", help="Create or replace an order")
    add_parser.add_argument("order_id")
    add_parser.add_argument("--total", type=_decimal, required=True, help="Order total in rupees")
    add_parser.add_argument("--transaction-id", default=None, help="Merchant transaction id")
    add_parser.add_argument(
        "--status",
        choices=[s.value for s in OrderStatus],
        default=OrderStatus.PENDING.value,
    )
    show_parser = orders_sub.add_parser("show", help="Show an order and its verification records")
    show_parser.add_argument("order_id")

    # Status bridge
    watch_parser = subparsers.add_parser("watch", help="Follow an order's payment status")
    watch_parser.add_argument("order_id")
    watch_parser.add_argument(
        "--mode",
        choices=[m.value for m in BridgeMode],
        default=None,
        help="Delivery mode (default: settings status_mode)",
    )
    watch_parser.add_argument(
        "--interval", type=_positive_float, default=None, help="Seconds between reads"
    )
    watch_parser.add_argument(
        "--max-attempts", type=_positive_int, default=None, help="Read budget"
    )

    subparsers.add_parser("stats", help="Show verification counts")

    return parser


def _open_repository(settings: Settings, args: argparse.Namespace) -> VerificationRepository:
    repo = VerificationRepository(args.db or settings.db_path)
    repo.initialize()
    return repo


def _read_email(path: Path) -> EmailMessage:
    return EmailMessage.model_validate_json(path.read_text(encoding="utf-8"))


def _print_outcome(outcome: VerificationOutcome) -> None:
    status = outcome.status.value if outcome.status is not None else "unmatched"
    print(f"{status}\t{outcome.message}")
    if outcome.payment is not None:
        p = outcome.payment
        print(f"  bank={p.bank_name} amount={p.amount} ref={p.upi_reference or '-'} to={p.receiver_id or '-'}")
    if outcome.validation is not None:
        for error in outcome.validation.errors:
            print(f"  - {error}")
    if outcome.match is not None:
        m = outcome.match
        print(f"  order={m.order_id} confidence={m.confidence_score} reason={m.match_reason}")


def _cmd_templates_list(settings: Settings, args: argparse.Namespace) -> int:
    registry = resolve_registry(settings, _open_repository(settings, args))
    for t in registry:
        print(f"{t.priority}\t{t.bank_name}\t{t.email_domain_filter}")
    return 0


def _cmd_templates_import(settings: Settings, args: argparse.Namespace) -> int:
    registry = load_templates_file(args.file)
    repo = _open_repository(settings, args)
    saved = repo.save_templates(registry)
    print(f"Stored {saved} templates")
    return 0


def _cmd_parse(settings: Settings, args: argparse.Namespace) -> int:
    service = PaymentVerificationService.from_settings(settings, _open_repository(settings, args))
    payment = service.parser.parse(_read_email(args.file))
    if payment is None:
        print("No template matched")
        return 1

    print(payment.model_dump_json(indent=2))
    result = service.validator.validate(payment)
    print("valid" if result.is_valid else "invalid")
    for error in result.errors:
        print(f"  - {error}")
    return 0


def _cmd_verify(settings: Settings, args: argparse.Namespace) -> int:
    service = PaymentVerificationService.from_settings(settings, _open_repository(settings, args))
    outcome = service.process_email(_read_email(args.file))
    _print_outcome(outcome)
    return 0 if outcome.verified else 1


async def _cmd_sync(settings: Settings, args: argparse.Namespace) -> int:
    service = PaymentVerificationService.from_settings(settings, _open_repository(settings, args))

    gmail = GmailClient(settings)
    await gmail.authenticate()
    emails = await gmail.fetch_payment_emails(
        service.parser.registry.domains(),
        newer_than_minutes=args.minutes,
        max_results=args.limit,
    )

    verified = 0
    for email in emails:
        outcome = service.process_email(email)
        verified += int(outcome.verified)
        _print_outcome(outcome)

    logger.info("sync_completed", fetched=len(emails), verified=verified)
    print(f"Processed {len(emails)} emails, verified {verified}")
    return 0


def _cmd_orders_add(settings: Settings, args: argparse.Namespace) -> int:
    repo = _open_repository(settings, args)
    order = repo.upsert_order(
        OrderRecord(
            id=args.order_id,
            total=args.total,
            transaction_id=args.transaction_id,
            status=OrderStatus(args.status),
        )
    )
    print(f"{order.id}\t{order.status.value}\t{order.total}")
    return 0


def _cmd_orders_show(settings: Settings, args: argparse.Namespace) -> int:
    repo = _open_repository(settings, args)
    order = repo.get_order(args.order_id)
    if order is None:
        print(f"Order not found: {args.order_id}")
        return 1

    confirmed = "confirmed" if order.payment_confirmed else "unconfirmed"
    print(f"{order.id}\t{order.status.value}\t{order.total}\t{confirmed}")
    for record in repo.list_order_verifications(order.id):
        print(
            f"  {record.id}\t{record.verification_status.value}\t"
            f"{record.amount}\t{record.upi_reference or '-'}"
        )
    return 0


async def _cmd_watch(settings: Settings, args: argparse.Namespace) -> int:
    repo = _open_repository(settings, args)
    # Orders change in other processes, so no in-process feed sees them and
    # push watches are served by polling.
    bridge = OrderStatusBridge(
        RepositoryOrderReader(repo),
        mode=BridgeMode(args.mode or settings.status_mode),
        interval=args.interval if args.interval is not None else settings.poll_interval_seconds,
        max_attempts=(
            args.max_attempts if args.max_attempts is not None else settings.poll_max_attempts
        ),
    )

    def on_status(snapshot: OrderPaymentStatus) -> None:
        print(
            f"{snapshot.order_id}\t{snapshot.status.value}\t"
            f"confirmed={snapshot.payment_confirmed}\tauto={snapshot.auto_verified}"
        )

    watch = bridge.watch(args.order_id, on_status)
    try:
        outcome = await watch.wait()
    finally:
        watch.stop()

    return 0 if outcome is WatchOutcome.CONFIRMED else 1


def _cmd_stats(settings: Settings, args: argparse.Namespace) -> int:
    service = PaymentVerificationService.from_settings(settings, _open_repository(settings, args))
    stats = service.get_verification_stats()
    print(f"Total verifications: {stats.total}")
    print(f"Verified: {stats.verified}")
    print(f"Pending: {stats.pending}")
    print(f"Failed: {stats.failed}")
    print(f"Success rate: {stats.success_rate:.1f}%")
    return 0


def _dispatch(settings: Settings, parsed: argparse.Namespace) -> int:
    if parsed.command == "templates":
        if parsed.templates_command == "list":
            return _cmd_templates_list(settings, parsed)
        if parsed.templates_command == "import":
            return _cmd_templates_import(settings, parsed)
    if parsed.command == "parse":
        return _cmd_parse(settings, parsed)
    if parsed.command == "verify":
        return _cmd_verify(settings, parsed)
    if parsed.command == "sync":
        return asyncio.run(_cmd_sync(settings, parsed))
    if parsed.command == "orders":
        if parsed.orders_command == "add":
            return _cmd_orders_add(settings, parsed)
        if parsed.orders_command == "show":
            return _cmd_orders_show(settings, parsed)
    if parsed.command == "watch":
        return asyncio.run(_cmd_watch(settings, parsed))
    if parsed.command == "stats":
        return _cmd_stats(settings, parsed)

    logger.error("unknown_command", command=parsed.command)
    return 2


def main(args: list[str] | None = None) -> int:
    """Main entry point for the UPI Payment Verifier CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Error: invalid settings: {exc}", file=sys.stderr)
        return 1

    # Logs go to stderr so command output stays parseable.
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )

    logger.info("upi_payment_verifier_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        return _dispatch(settings, parsed)
    except (VerifierError, ValidationError, OSError, ValueError) as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
