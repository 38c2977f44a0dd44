"""In-process order change notifications.

The repository publishes every order write here; push-mode status observers
subscribe per order id.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any, Callable

import structlog

logger = structlog.get_logger()

ChangeCallback = Callable[[Mapping[str, Any]], None]


class FeedSubscription:
    """Subscription to one order's changes; release it with `unsubscribe()`."""

    def __init__(self, feed: "OrderChangeFeed", order_id: str, callback: ChangeCallback) -> None:
        self.order_id = order_id
        self.callback = callback
        self._feed = feed
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)


class OrderChangeFeed:
    """Fan-out of order field updates to per-order subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[FeedSubscription]] = {}

    def subscribe(self, order_id: str, callback: ChangeCallback) -> FeedSubscription:
        subscription = FeedSubscription(self, order_id, callback)
        with self._lock:
            self._subscribers.setdefault(order_id, []).append(subscription)
        return subscription

    def publish(self, fields: Mapping[str, Any]) -> int:
        """Deliver `fields` to every subscriber of `fields["id"]`.

        A failing subscriber is logged and does not prevent delivery to the
        others. Returns the number of subscribers notified.
        """

        order_id = str(fields["id"])
        with self._lock:
            subscribers = list(self._subscribers.get(order_id, ()))

        for subscription in subscribers:
            try:
                subscription.callback(dict(fields))
            except Exception as exc:  # noqa: BLE001
                logger.exception("order_change_delivery_failed", order_id=order_id, error=str(exc))
        return len(subscribers)

    def subscriber_count(self, order_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(order_id, ()))

    def _remove(self, subscription: FeedSubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.order_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.order_id, None)
