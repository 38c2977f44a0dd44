"""Unit tests for the command-line interface."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from upi_payment_verifier.cli import main
from upi_payment_verifier.config import get_settings

PHONEPE_BODY = "You paid ₹1,234.56\nTo: hrejuh@upi\nUPI Ref: 123456789012\n"


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("UPI_VERIFIER_LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_args(tmp_path) -> list[str]:
    return ["--db", str(tmp_path / "cli.sqlite3")]


@pytest.fixture
def write_email(tmp_path):
    """Write a PhonePe email received `offset` from the moment of writing."""

    def _write(offset: timedelta = timedelta(seconds=5), message_id: str = "cli-1"):
        path = tmp_path / f"{message_id}.json"
        received_at = datetime.now(timezone.utc) + offset
        path.write_text(
            json.dumps(
                {
                    "subject": "Payment Successful",
                    "body": PHONEPE_BODY,
                    "from_address": "noreply@phonepe.com",
                    "received_at": received_at.isoformat(),
                    "message_id": message_id,
                }
            ),
            encoding="utf-8",
        )
        return path

    return _write


@pytest.fixture
def email_file(write_email):
    return write_email()


def test_orders_add_and_show(db_args, capsys) -> None:
    assert main([*db_args, "orders", "add", "order-1", "--total", "1234.56"]) == 0
    assert main([*db_args, "orders", "show", "order-1"]) == 0

    out = capsys.readouterr().out
    assert "order-1\tpending\t1234.56\tunconfirmed" in out


def test_orders_show_unknown(db_args, capsys) -> None:
    assert main([*db_args, "orders", "show", "ghost"]) == 1
    assert "Order not found: ghost" in capsys.readouterr().out


def test_verify_confirms_order_and_watch_exits_zero(db_args, write_email, capsys) -> None:
    main([*db_args, "orders", "add", "order-1", "--total", "1234.56"])
    email_file = write_email()

    assert main([*db_args, "verify", str(email_file)]) == 0
    assert main([*db_args, "watch", "order-1", "--interval", "0.01"]) == 0
    assert main([*db_args, "stats"]) == 0

    out = capsys.readouterr().out
    assert "verified\tPayment verified successfully" in out
    assert "order-1\tpaid\tconfirmed=True\tauto=True" in out
    assert "Success rate: 100.0%" in out


def test_verify_without_order_fails(db_args, email_file, capsys) -> None:
    assert main([*db_args, "verify", str(email_file)]) == 1
    assert "failed\tNo matching order found" in capsys.readouterr().out


def test_watch_exhausted_exits_one(db_args, capsys) -> None:
    main([*db_args, "orders", "add", "order-1", "--total", "10"])

    code = main([*db_args, "watch", "order-1", "--interval", "0.01", "--max-attempts", "2"])

    assert code == 1
    assert capsys.readouterr().out.count("confirmed=False") == 2


def test_parse_prints_payment(db_args, email_file, capsys) -> None:
    assert main([*db_args, "parse", str(email_file)]) == 0

    out = capsys.readouterr().out
    assert '"bank_name": "PhonePe"' in out
    assert out.splitlines()[-1] == "valid"


def test_templates_import_and_list(db_args, tmp_path, capsys) -> None:
    path = tmp_path / "templates.json"
    path.write_text(
        json.dumps(
            [
                {
                    "bank_name": "HDFC",
                    "email_domain": "hdfcbank.com",
                    "amount_pattern": r"INR ([0-9,.]+)",
                    "priority": 4,
                }
            ]
        ),
        encoding="utf-8",
    )

    assert main([*db_args, "templates", "list"]) == 0
    assert main([*db_args, "templates", "import", str(path)]) == 0
    capsys.readouterr()
    assert main([*db_args, "templates", "list"]) == 0

    assert capsys.readouterr().out.strip() == "4\tHDFC\thdfcbank.com"


def test_missing_email_file_is_reported(db_args, tmp_path, capsys) -> None:
    assert main([*db_args, "verify", str(tmp_path / "nope.json")]) == 1
    assert "Error:" in capsys.readouterr().err


def test_verify_tolerates_email_stamped_just_before_order(db_args, write_email, capsys) -> None:
    email_file = write_email(offset=timedelta(seconds=-30))
    main([*db_args, "orders", "add", "order-1", "--total", "1234.56"])

    assert main([*db_args, "verify", str(email_file)]) == 0
    assert "verified\tPayment verified successfully" in capsys.readouterr().out


def test_watch_push_mode_ends_for_confirmed_order(db_args, write_email, capsys) -> None:
    main([*db_args, "orders", "add", "order-1", "--total", "1234.56"])
    main([*db_args, "verify", str(write_email())])
    capsys.readouterr()

    code = main([*db_args, "watch", "order-1", "--mode", "push", "--interval", "0.01"])

    captured = capsys.readouterr()
    assert code == 0
    assert "order-1\tpaid\tconfirmed=True\tauto=True" in captured.out
    assert "push_unavailable_falling_back_to_poll" in captured.err


def test_invalid_status_mode_setting_is_reported(db_args, monkeypatch, capsys) -> None:
    monkeypatch.setenv("UPI_VERIFIER_STATUS_MODE", "realtime")
    get_settings.cache_clear()

    assert main([*db_args, "watch", "order-1", "--max-attempts", "1"]) == 1
    assert "Error: invalid settings" in capsys.readouterr().err


@pytest.mark.parametrize(
    "option",
    [["--max-attempts", "0"], ["--max-attempts", "-3"], ["--interval", "0"]],
)
def test_watch_rejects_non_positive_budget(db_args, option, capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main([*db_args, "watch", "order-1", *option])

    assert exc_info.value.code == 2
    assert option[0] in capsys.readouterr().err


def test_watch_max_attempts_one_reads_once(db_args, capsys) -> None:
    main([*db_args, "orders", "add", "order-1", "--total", "10"])

    assert main([*db_args, "watch", "order-1", "--interval", "0.01", "--max-attempts", "1"]) == 1
    assert capsys.readouterr().out.count("confirmed=False") == 1
