"""Custom exceptions for UPI Payment Verifier."""


class VerifierError(Exception):
    """Base exception for all UPI Payment Verifier errors."""


class ConfigurationError(VerifierError):
    """Exception raised for configuration related errors."""


class TemplateConfigurationError(ConfigurationError):
    """Exception raised when a bank template definition is malformed."""


class GmailAPIError(VerifierError):
    """Exception raised for Gmail API related errors."""


class AuthenticationError(VerifierError):
    """Exception raised for authentication failures."""


class RepositoryError(VerifierError):
    """Exception raised when the verification store cannot be read or written."""


class OrderNotFoundError(RepositoryError):
    """Exception raised when an order id is unknown to the store."""

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class UnsupportedOperationError(VerifierError):
    """Exception raised for operations that exist but are not available here."""


class ManualVerificationUnsupportedError(UnsupportedOperationError):
    """Manual payment verification must go through the admin backend."""

    def __init__(self) -> None:
        super().__init__(
            "Manual payment verification is not available in this component; "
            "use the admin verification backend instead."
        )
