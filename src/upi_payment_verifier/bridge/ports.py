"""Ports (interfaces) used by the status bridge.

Ports define the minimal contracts for reading an order and for receiving its
change notifications, so the bridge works with any store or event stream.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Optional, Protocol

OrderFields = Mapping[str, Any]
"""Order columns: id, status, payment_confirmed, auto_verified, payment_verification_id."""


class OrderReader(Protocol):
    """Request/response read of one order's current payment fields."""

    async def read_order(self, order_id: str) -> Optional[OrderFields]:
        ...


class Subscription(Protocol):
    """Handle for an active change-notification subscription."""

    def unsubscribe(self) -> None:
        ...


class OrderChangeSource(Protocol):
    """Event stream of order updates scoped to a single order id."""

    def subscribe(
        self, order_id: str, callback: Callable[[OrderFields], None]
    ) -> Subscription:
        ...
