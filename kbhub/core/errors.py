"""Error taxonomy shared by the retrieval, answer and billing services."""
from decimal import Decimal
from typing import Optional


class KBHubError(Exception):
    """Base class for all domain errors."""


class ConfigurationError(KBHubError):
    """A provider credential or required setting is missing."""


class ProviderError(KBHubError):
    """An embedding, chat or payment provider call failed or returned garbage.

    Callers may treat this as retryable; no retry policy is applied here.
    """

    def __init__(self, message: str, provider: str = "OpenAI", model: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model


class InsufficientBalanceError(KBHubError):
    """The tenant balance gate failed."""

    def __init__(self, balance: Decimal):
        super().__init__(f"Insufficient balance: {balance}")
        self.balance = balance


class AccessDeniedError(KBHubError):
    """The principal may not see the requested document (or it does not exist)."""


class DuplicatePaymentError(KBHubError):
    """A completed top-up with the same reference already exists."""

    def __init__(self, reference: str):
        super().__init__(f"Payment {reference} was already processed")
        self.reference = reference


class DocumentStateError(KBHubError):
    """A document version transition is not allowed from its current status."""
