"""Waterpoint Gateway - Payment transaction models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from waterpoint.utils.helpers import utcnow


class PaymentVariant(str, Enum):
    """Payment network integration."""

    MOBILE_PUSH = "mobile_push"  # M-Pesa STK push
    HOSTED_CHECKOUT = "hosted_checkout"  # Paystack hosted checkout


class TransactionStatus(str, Enum):
    """Transaction status.

    State transitions:
    - mobile_push: pending -> processing -> completed / cancelled / timeout / failed
    - hosted_checkout: pending -> processing -> completed / failed / cancelled / expired
    - pending -> failed when the provider rejects initiation
    - pending / processing -> timeout (mobile_push) or expired (hosted_checkout) on age
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self not in (TransactionStatus.PENDING, TransactionStatus.PROCESSING)


OPEN_STATUSES = (TransactionStatus.PENDING, TransactionStatus.PROCESSING)


class TransactionReference(SQLModel, table=True):
    """Global reference registry.

    One row per issued reference, whatever the variant, so a reference can
    never exist in both variant tables.
    """

    __tablename__ = "transaction_references"

    id: int | None = Field(default=None, primary_key=True)
    reference: str = Field(max_length=64, unique=True, index=True)
    variant: PaymentVariant
    created_at: datetime = Field(default_factory=utcnow, sa_type=sa.DateTime)


class TransactionBase(SQLModel):
    """Columns shared by both variant tables."""

    reference: str = Field(
        max_length=64,
        unique=True,
        index=True,
        description="Opaque reference (WS-<ms>-<hex>)",
    )
    amount: Decimal = Field(
        sa_type=sa.DECIMAL(12, 2),
        description="Charged amount, always liters x price_per_liter",
    )
    liters: int = Field(description="Whole liters purchased")
    currency: str = Field(default="KES", max_length=3)
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)
    details: dict[str, Any] = Field(
        default_factory=dict,
        sa_type=sa.JSON,
        description="Requested amount, unit price and caller metadata",
    )
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=sa.DateTime)
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=sa.DateTime,
        sa_column_kwargs={"onupdate": utcnow},
    )


class MpesaTransaction(TransactionBase, table=True):
    """M-Pesa STK push transaction (mobile_push variant).

    Times out 30 minutes after creation unless Safaricom reports a result.
    """

    __tablename__ = "mpesa_transactions"

    id: int | None = Field(default=None, primary_key=True)
    phone_number: str = Field(max_length=12, description="Normalised 2547XXXXXXXX")
    checkout_request_id: str | None = Field(default=None, max_length=100, index=True)
    merchant_request_id: str | None = Field(default=None, max_length=100)
    receipt_number: str | None = Field(default=None, max_length=50, index=True)
    transaction_date: str | None = Field(default=None, max_length=20)
    result_code: int | None = None
    result_desc: str | None = Field(default=None, max_length=500)


class CheckoutTransaction(TransactionBase, table=True):
    """Paystack hosted checkout transaction (hosted_checkout variant)."""

    __tablename__ = "checkout_transactions"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(max_length=255)
    phone_number: str | None = Field(default=None, max_length=12)

    # Provider correlation
    provider_reference: str | None = Field(default=None, max_length=100, index=True)
    access_code: str | None = Field(default=None, max_length=100)
    authorization_url: str | None = Field(default=None, max_length=500)
    provider_status: str | None = Field(default=None, max_length=50)
    gateway_response: str | None = Field(default=None, max_length=255)
    channel: str | None = Field(default=None, max_length=50)
    customer_id: str | None = Field(default=None, max_length=50)

    # Card / bank authorization
    authorization_code: str | None = Field(default=None, max_length=100)
    card_bin: str | None = Field(default=None, max_length=10)
    card_last4: str | None = Field(default=None, max_length=4)
    card_exp_month: str | None = Field(default=None, max_length=2)
    card_exp_year: str | None = Field(default=None, max_length=4)
    card_type: str | None = Field(default=None, max_length=50)
    bank: str | None = Field(default=None, max_length=100)
    country_code: str | None = Field(default=None, max_length=2)
    card_brand: str | None = Field(default=None, max_length=50)
    reusable: bool | None = None
    card_signature: str | None = Field(default=None, max_length=100)

    paid_at: datetime | None = Field(default=None, sa_type=sa.DateTime)
    expires_at: datetime = Field(index=True, sa_type=sa.DateTime, description="Creation + 24h")


TransactionModel = Union[MpesaTransaction, CheckoutTransaction]

VARIANT_MODELS: dict[PaymentVariant, type[MpesaTransaction] | type[CheckoutTransaction]] = {
    PaymentVariant.MOBILE_PUSH: MpesaTransaction,
    PaymentVariant.HOSTED_CHECKOUT: CheckoutTransaction,
}

# Columns a provider event may write, per variant. Anything else is ignored.
UPDATABLE_FIELDS: dict[PaymentVariant, frozenset[str]] = {
    PaymentVariant.MOBILE_PUSH: frozenset(
        {
            "checkout_request_id",
            "merchant_request_id",
            "receipt_number",
            "transaction_date",
            "result_code",
            "result_desc",
        }
    ),
    PaymentVariant.HOSTED_CHECKOUT: frozenset(
        {
            "provider_reference",
            "access_code",
            "authorization_url",
            "provider_status",
            "gateway_response",
            "channel",
            "customer_id",
            "authorization_code",
            "card_bin",
            "card_last4",
            "card_exp_month",
            "card_exp_year",
            "card_type",
            "bank",
            "country_code",
            "card_brand",
            "reusable",
            "card_signature",
            "paid_at",
        }
    ),
}


def variant_of(transaction: TransactionModel) -> PaymentVariant:
    if isinstance(transaction, MpesaTransaction):
        return PaymentVariant.MOBILE_PUSH
    return PaymentVariant.HOSTED_CHECKOUT
