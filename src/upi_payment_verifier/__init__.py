"""UPI Payment Verifier - automatic confirmation of UPI payments from bank emails.

This package parses bank and wallet notification emails into structured
payments, validates them against merchant constraints, matches them to pending
orders, and exposes a live push/poll view of an order's payment status.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from upi_payment_verifier.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
