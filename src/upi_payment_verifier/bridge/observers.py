"""Live order payment status via change notifications or timed polling.

Both mechanisms implement the same StatusObserver capability: `watch()`
returns a StatusWatch immediately and delivers full OrderPaymentStatus
snapshots to a callback until the watch ends. Each snapshot is authoritative
as of its delivery; nothing is diffed against earlier snapshots.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import structlog
from pydantic import ValidationError

from upi_payment_verifier.bridge.ports import OrderChangeSource, OrderFields, OrderReader
from upi_payment_verifier.models import OrderPaymentStatus

StatusCallback = Callable[[OrderPaymentStatus], None]

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_ATTEMPTS = 150


class WatchOutcome(str, Enum):
    """Terminal state of a watch."""

    CONFIRMED = "confirmed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class BridgeMode(str, Enum):
    """Delivery mechanism for order status snapshots."""

    PUSH = "push"
    POLL = "poll"


class StatusWatch:
    """Stop handle and completion signal for one watched order."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        self.reads = 0
        self.deliveries = 0
        self._stop_requested = asyncio.Event()
        self._done = asyncio.Event()
        self._outcome: Optional[WatchOutcome] = None
        self._on_stop: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def outcome(self) -> Optional[WatchOutcome]:
        """Terminal state, or None while the watch is still running."""
        return self._outcome

    def stop(self) -> None:
        """Cancel the watch. Safe to call at any time, any number of times."""

        if self._outcome is not None:
            return
        self._stop_requested.set()
        if self._on_stop is not None:
            self._on_stop()

    async def wait(self) -> WatchOutcome:
        """Block until the watch ends and return how it ended."""

        await self._done.wait()
        assert self._outcome is not None
        return self._outcome

    def _finish(self, outcome: WatchOutcome) -> None:
        if self._outcome is None:
            self._outcome = outcome
            self._done.set()


class StatusObserver(Protocol):
    """Delivers order payment snapshots until stopped."""

    def watch(self, order_id: str, on_status: StatusCallback) -> StatusWatch:
        ...


def _deliver(
    logger: Any,
    watch: StatusWatch,
    on_status: StatusCallback,
    snapshot: OrderPaymentStatus,
) -> None:
    watch.deliveries += 1
    try:
        on_status(snapshot)
    except Exception as exc:  # noqa: BLE001
        logger.exception("status_callback_failed", order_id=watch.order_id, error=str(exc))


async def _read_snapshot(
    reader: OrderReader, logger: Any, order_id: str, attempt: int
) -> Optional[OrderPaymentStatus]:
    """Read and translate the order; failures are logged and yield None."""

    try:
        fields = await reader.read_order(order_id)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "order_status_read_failed", order_id=order_id, attempt=attempt, error=str(exc)
        )
        return None

    if fields is None:
        logger.warning("order_status_missing", order_id=order_id, attempt=attempt)
        return None

    try:
        return OrderPaymentStatus.from_order_fields(fields)
    except (KeyError, ValidationError) as exc:
        logger.warning(
            "order_status_malformed", order_id=order_id, attempt=attempt, error=str(exc)
        )
        return None


class PollingStatusObserver:
    """Pull mode: read the order on a fixed interval up to an attempt budget.

    Polling stops for good on the first snapshot with `payment_confirmed`,
    after `max_attempts` reads, or when the watch is stopped. Exactly one read
    is in flight per watch and a result that arrives after `stop()` is dropped.
    """

    def __init__(
        self,
        reader: OrderReader,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Any | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if interval < 0:
            raise ValueError(f"interval must not be negative, got {interval}")
        self.reader = reader
        self.interval = interval
        self.max_attempts = max_attempts
        self._logger = logger or structlog.get_logger()

    def watch(self, order_id: str, on_status: StatusCallback) -> StatusWatch:
        """Start polling in the running event loop and return the stop handle."""

        watch = StatusWatch(order_id)
        loop = asyncio.get_running_loop()
        watch._task = loop.create_task(self._poll(watch, on_status))
        self._logger.info(
            "order_status_polling_started",
            order_id=order_id,
            interval=self.interval,
            max_attempts=self.max_attempts,
        )
        return watch

    async def _poll(self, watch: StatusWatch, on_status: StatusCallback) -> None:
        try:
            while True:
                if watch.stop_requested:
                    self._end(watch, WatchOutcome.CANCELLED)
                    return

                watch.reads += 1
                snapshot = await _read_snapshot(
                    self.reader, self._logger, watch.order_id, watch.reads
                )

                if watch.stop_requested:
                    self._logger.debug("order_status_result_discarded", order_id=watch.order_id)
                    self._end(watch, WatchOutcome.CANCELLED)
                    return

                if snapshot is not None:
                    _deliver(self._logger, watch, on_status, snapshot)
                    if snapshot.payment_confirmed:
                        self._end(watch, WatchOutcome.CONFIRMED)
                        return

                if watch.reads >= self.max_attempts:
                    self._end(watch, WatchOutcome.EXHAUSTED)
                    return

                try:
                    await asyncio.wait_for(watch._stop_requested.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self._end(watch, WatchOutcome.CANCELLED)
            raise

    def _end(self, watch: StatusWatch, outcome: WatchOutcome) -> None:
        watch._finish(outcome)
        self._logger.info(
            "order_status_polling_stopped",
            order_id=watch.order_id,
            outcome=outcome.value,
            reads=watch.reads,
        )


class PushStatusObserver:
    """Push mode: translate each change notification into a snapshot.

    With a reader, the current order is read once right after subscribing so
    an order that is already confirmed ends the watch without waiting for a
    notification. The watch ends CONFIRMED on the first delivered snapshot
    with `payment_confirmed` and CANCELLED when stopped.
    """

    def __init__(
        self,
        change_source: OrderChangeSource,
        *,
        reader: OrderReader | None = None,
        logger: Any | None = None,
    ) -> None:
        self.change_source = change_source
        self.reader = reader
        self._logger = logger or structlog.get_logger()

    def watch(self, order_id: str, on_status: StatusCallback) -> StatusWatch:
        """Subscribe to changes of `order_id`.

        Raises whatever the change source raises when the subscription cannot
        be established.
        """

        watch = StatusWatch(order_id)

        def deliver(snapshot: OrderPaymentStatus) -> None:
            if watch.stop_requested or watch.outcome is not None:
                return
            _deliver(self._logger, watch, on_status, snapshot)
            if snapshot.payment_confirmed:
                release(WatchOutcome.CONFIRMED)

        def handle(fields: OrderFields) -> None:
            if watch.stop_requested or watch.outcome is not None:
                return
            try:
                snapshot = OrderPaymentStatus.from_order_fields(fields)
            except (KeyError, ValidationError) as exc:
                self._logger.warning("order_change_malformed", order_id=order_id, error=str(exc))
                return
            deliver(snapshot)

        subscription = self.change_source.subscribe(order_id, handle)
        self._logger.info("order_status_subscribed", order_id=order_id)

        def release(outcome: WatchOutcome = WatchOutcome.CANCELLED) -> None:
            try:
                subscription.unsubscribe()
            finally:
                watch._finish(outcome)
            self._logger.info("order_status_unsubscribed", order_id=order_id, outcome=outcome.value)

        watch._on_stop = release
        if self.reader is not None:
            watch._task = asyncio.get_running_loop().create_task(self._prime(watch, deliver))
        return watch

    async def _prime(self, watch: StatusWatch, deliver: StatusCallback) -> None:
        if watch.stop_requested or watch.outcome is not None:
            return
        assert self.reader is not None
        watch.reads += 1
        snapshot = await _read_snapshot(self.reader, self._logger, watch.order_id, watch.reads)
        if snapshot is not None:
            deliver(snapshot)


class OrderStatusBridge:
    """StatusObserver whose push/poll mechanism is chosen at construction.

    Push mode falls back to polling when no change source is configured or
    the subscription cannot be established.
    """

    def __init__(
        self,
        reader: OrderReader,
        *,
        mode: BridgeMode = BridgeMode.POLL,
        change_source: OrderChangeSource | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Any | None = None,
    ) -> None:
        self.mode = BridgeMode(mode)
        self._logger = logger or structlog.get_logger()
        self._poll = PollingStatusObserver(
            reader, interval=interval, max_attempts=max_attempts, logger=self._logger
        )
        self._push = (
            PushStatusObserver(change_source, reader=reader, logger=self._logger)
            if change_source is not None
            else None
        )

    def watch(self, order_id: str, on_status: StatusCallback) -> StatusWatch:
        if self.mode is BridgeMode.PUSH:
            if self._push is None:
                self._logger.warning(
                    "push_unavailable_falling_back_to_poll",
                    order_id=order_id,
                    reason="no change source configured",
                )
            else:
                try:
                    return self._push.watch(order_id, on_status)
                except Exception as exc:  # noqa: BLE001
                    self._logger.warning(
                        "push_unavailable_falling_back_to_poll",
                        order_id=order_id,
                        reason=str(exc),
                    )
        return self._poll.watch(order_id, on_status)
