"""Models module - SQLModel database entities."""

from waterpoint.models.credential import LIVE_STATUSES, Credential, CredentialStatus
from waterpoint.models.transaction import (
    OPEN_STATUSES,
    UPDATABLE_FIELDS,
    VARIANT_MODELS,
    CheckoutTransaction,
    MpesaTransaction,
    PaymentVariant,
    TransactionModel,
    TransactionReference,
    TransactionStatus,
    variant_of,
)

__all__ = [
    # Transactions
    "CheckoutTransaction",
    "MpesaTransaction",
    "OPEN_STATUSES",
    "PaymentVariant",
    "TransactionModel",
    "TransactionReference",
    "TransactionStatus",
    "UPDATABLE_FIELDS",
    "VARIANT_MODELS",
    "variant_of",
    # Credentials
    "Credential",
    "CredentialStatus",
    "LIVE_STATUSES",
]
