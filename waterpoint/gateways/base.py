"""Base payment gateway interface.

Defines the abstract interface both payment network integrations follow, so
the ledger can drive M-Pesa and Paystack through the same calls.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from waterpoint.models.transaction import PaymentVariant, TransactionStatus


class GatewayError(Exception):
    """Provider call failed or returned an error payload."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.provider_code = provider_code
        super().__init__(message)


@dataclass
class InitiationResult:
    """Result of starting a payment with the provider."""

    provider_handle: str
    prompt: str | None = None
    redirect_url: str | None = None
    # Column name -> value, filtered through the ledger's allow-list
    correlation: dict[str, Any] = field(default_factory=dict)


@dataclass
class VerificationResult:
    """Provider's current view of a payment.

    ``status`` is None while the provider has no final answer yet.
    """

    status: TransactionStatus | None
    paid_at: datetime | None = None
    result_code: int | None = None
    message: str | None = None
    correlation: dict[str, Any] = field(default_factory=dict)


@dataclass
class CallbackEvent:
    """Normalised asynchronous provider notification.

    ``reference`` is set when the provider echoes our own reference
    (Paystack); otherwise the ledger resolves the row by ``provider_handle``.
    """

    provider_handle: str | None
    status: TransactionStatus | None
    result_code: int | str | None = None
    reference: str | None = None
    event_type: str | None = None
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    correlation: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract base class for payment network adapters."""

    # Whether callbacks carry a signature that must verify before processing
    signed_callbacks: bool = False

    @property
    @abstractmethod
    def variant(self) -> PaymentVariant:
        """Return the payment variant this adapter serves."""
        pass

    @abstractmethod
    async def initiate(
        self,
        amount: Decimal,
        reference: str,
        destination: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitiationResult:
        """Start a payment.

        Args:
            amount: Adjusted amount to charge
            reference: Our transaction reference
            destination: Phone number (mobile_push) or e-mail (hosted_checkout)
            description: Human-readable purpose shown to the payer
            metadata: Extra data echoed back by the provider where supported

        Returns:
            InitiationResult with the provider handle

        Raises:
            GatewayError: If the provider rejects the request or times out
        """
        pass

    @abstractmethod
    async def verify(self, provider_handle: str) -> VerificationResult:
        """Ask the provider for the current payment state.

        Raises:
            GatewayError: If the provider cannot be queried
        """
        pass

    @abstractmethod
    def parse_callback(self, raw: dict[str, Any]) -> CallbackEvent:
        """Normalise a provider callback/webhook body.

        Raises:
            GatewayError: If the payload is malformed
        """
        pass

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Check a webhook signature. Adapters without signatures accept all."""
        return True

    async def aclose(self) -> None:
        """Release network resources."""
        pass
