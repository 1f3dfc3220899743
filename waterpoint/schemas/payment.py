"""Waterpoint Gateway - Payment schemas.

Schemas for pricing, payment initiation and the unified transaction view.
"""

from decimal import Decimal
from typing import Any

from pydantic import Field

from waterpoint.schemas.common import CamelModel
from waterpoint.services.pricing_service import PricePreview
from waterpoint.utils.helpers import json_number, render_fields

# ============ Pricing Schemas ============


class PreviewRequest(CamelModel):
    """Request a price preview."""

    amount: Decimal = Field(..., description="Requested amount in the pricing currency")


class PriceQuote(CamelModel):
    """Priced amount; ``amount`` is what will be charged."""

    requested_amount: float
    amount: float
    liters: int
    price_per_liter: float
    currency: str
    rounding_strategy: str
    difference: float = Field(..., description="amount - requested_amount")

    @classmethod
    def from_preview(cls, preview: PricePreview) -> "PriceQuote":
        return cls(**{key: json_number(value) for key, value in preview.to_dict().items()})


class PricingInfo(CamelModel):
    price_per_liter: float
    currency: str
    min_amount: float
    max_amount: float
    min_liters: int
    max_liters: int
    rounding_strategy: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricingInfo":
        return cls(**{key: json_number(value) for key, value in data.items()})


# ============ Initiation Schemas ============


class MpesaInitiateRequest(CamelModel):
    """Start an M-Pesa STK push."""

    phone_number: str = Field(..., max_length=20, description="Kenyan mobile number")
    amount: Decimal = Field(..., description="Requested amount")
    description: str | None = Field(default=None, max_length=100)
    metadata: dict[str, Any] | None = None


class PaystackInitiateRequest(CamelModel):
    """Start a Paystack hosted checkout."""

    email: str = Field(..., max_length=255, description="Payer e-mail")
    amount: Decimal = Field(..., description="Requested amount")
    phone_number: str | None = Field(
        default=None, max_length=20, description="Optional number to receive the OTP by SMS"
    )
    description: str | None = Field(default=None, max_length=100)
    metadata: dict[str, Any] | None = None


# ============ Transaction Schemas ============


class TransactionView(CamelModel):
    """Unified transaction view across both variants."""

    transaction_reference: str
    variant: str
    status: str
    amount: float
    liters: int
    currency: str
    created_at: str | None = None
    updated_at: str | None = None

    # Variant-specific
    phone_number: str | None = None
    email: str | None = None
    checkout_request_id: str | None = None
    receipt_number: str | None = None
    result_code: int | None = None
    result_desc: str | None = None
    authorization_url: str | None = None
    channel: str | None = None
    paid_at: str | None = None
    expires_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransactionView":
        return cls(**render_fields(data, cls.model_fields))


class InitiationView(TransactionView):
    """Transaction just handed to the provider."""

    provider_handle: str | None = None
    prompt: str | None = None
    redirect_url: str | None = None
    requested_amount: float | None = None
    difference: float | None = None
