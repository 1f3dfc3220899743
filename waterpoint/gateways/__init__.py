"""Payment gateway adapters (M-Pesa STK push, Paystack checkout)."""

from waterpoint.gateways.base import (
    CallbackEvent,
    GatewayError,
    InitiationResult,
    PaymentGateway,
    VerificationResult,
)
from waterpoint.gateways.factory import build_gateways, close_gateways

__all__ = [
    "CallbackEvent",
    "GatewayError",
    "InitiationResult",
    "PaymentGateway",
    "VerificationResult",
    "build_gateways",
    "close_gateways",
]
