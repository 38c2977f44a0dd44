"""Local persistence for orders and payment verification records."""

from .changes import FeedSubscription, OrderChangeFeed
from .repository import RepositoryOrderReader, VerificationRepository

__all__ = ["FeedSubscription", "OrderChangeFeed", "RepositoryOrderReader", "VerificationRepository"]
