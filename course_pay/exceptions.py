"""
Error types raised by the payment adapter.
"""


class PaymentError(Exception):
    """Base class for payment adapter errors."""


class PaymentConfigurationError(PaymentError):
    """A provider is enabled but its credentials are missing."""


class PaymentProviderError(PaymentError):
    """The provider rejected a request or could not be reached.

    ``message`` is safe to show to the paying customer.
    """

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.message = message
        self.provider = provider


class WebhookVerificationError(PaymentError):
    """A webhook delivery failed authenticity checks or could not be parsed."""
