"""Verification status bridge.

Gives callers a live view of one order's payment status through either change
notifications (push) or timed reads (poll).
"""

from .observers import (
    BridgeMode,
    OrderStatusBridge,
    PollingStatusObserver,
    PushStatusObserver,
    StatusObserver,
    StatusWatch,
    WatchOutcome,
)
from .ports import OrderChangeSource, OrderReader, Subscription

__all__ = [
    "BridgeMode",
    "OrderChangeSource",
    "OrderReader",
    "OrderStatusBridge",
    "PollingStatusObserver",
    "PushStatusObserver",
    "StatusObserver",
    "StatusWatch",
    "Subscription",
    "WatchOutcome",
]
