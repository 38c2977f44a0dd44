"""Order matching and end-to-end payment verification."""

from .matching import find_matching_order
from .service import PaymentVerificationService, VerificationOutcome, resolve_registry

__all__ = [
    "PaymentVerificationService",
    "VerificationOutcome",
    "find_matching_order",
    "resolve_registry",
]
