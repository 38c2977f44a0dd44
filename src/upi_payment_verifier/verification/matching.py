"""Correlate a parsed payment with the order it most likely pays for."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from upi_payment_verifier.models import OrderMatch, OrderRecord, OrderStatus, ParsedPayment

EXACT_TRANSACTION_MATCH = "exact_transaction_id_match"
AMOUNT_AND_TIME_MATCH = "amount_and_time_match"

DEFAULT_AMOUNT_TOLERANCE = Decimal("2.0")
DEFAULT_TIME_WINDOW = timedelta(minutes=10)
DEFAULT_CLOCK_SKEW = timedelta(seconds=60)

_OPEN_STATUSES = {OrderStatus.PENDING, OrderStatus.PROCESSING}


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _amount_confidence(difference: Decimal) -> Decimal:
    if difference < Decimal("0.01"):
        return Decimal("90")
    if difference < Decimal("1"):
        return Decimal("80")
    return Decimal("70")


def find_matching_order(
    payment: ParsedPayment,
    orders: Iterable[OrderRecord],
    *,
    amount_tolerance: Decimal = DEFAULT_AMOUNT_TOLERANCE,
    time_window: timedelta = DEFAULT_TIME_WINDOW,
    clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
) -> OrderMatch | None:
    """Pick the best open order for `payment`.

    An order whose transaction id appears in the email wins outright.
    Otherwise the order must be within `amount_tolerance` of the paid amount
    and created no more than `time_window` before the payment. Mail and
    application clocks drift, so a payment stamped up to `clock_skew` before
    the order was created still counts. The closest amount wins, then the
    most recently created order.
    """

    candidates = [
        o for o in orders if o.status in _OPEN_STATUSES and not o.payment_confirmed
    ]

    if payment.transaction_id:
        for order in candidates:
            if order.transaction_id and order.transaction_id == payment.transaction_id:
                return OrderMatch(
                    order_id=order.id,
                    confidence_score=Decimal("100"),
                    match_reason=EXACT_TRANSACTION_MATCH,
                )

    paid_at = _as_aware(payment.timestamp)
    best: tuple[Decimal, float, OrderRecord] | None = None
    for order in candidates:
        difference = abs(order.total - payment.amount)
        if difference >= amount_tolerance:
            continue
        created_at = _as_aware(order.created_at)
        if not (created_at - clock_skew <= paid_at <= created_at + time_window):
            continue
        key = (difference, -created_at.timestamp(), order)
        if best is None or key[:2] < best[:2]:
            best = key

    if best is None:
        return None

    difference, _, order = best
    return OrderMatch(
        order_id=order.id,
        confidence_score=_amount_confidence(difference),
        match_reason=AMOUNT_AND_TIME_MATCH,
    )
