"""Cross-variant transaction lookup."""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from waterpoint.models.transaction import (
    CheckoutTransaction,
    MpesaTransaction,
    TransactionModel,
)

# Search order for unified lookups; first hit wins
LOOKUP_ORDER = (MpesaTransaction, CheckoutTransaction)


async def find_transaction(session: AsyncSession, reference: str) -> TransactionModel | None:
    """Find a transaction by reference in the M-Pesa store, then Paystack."""
    for model in LOOKUP_ORDER:
        result = await session.execute(select(model).where(model.reference == reference))
        transaction = result.scalar_one_or_none()
        if transaction is not None:
            return transaction
    return None
