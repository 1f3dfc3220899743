"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PAYMENT_VARIANT = sa.Enum("MOBILE_PUSH", "HOSTED_CHECKOUT", name="paymentvariant")
TRANSACTION_STATUS = sa.Enum(
    "PENDING",
    "PROCESSING",
    "COMPLETED",
    "FAILED",
    "CANCELLED",
    "EXPIRED",
    "TIMEOUT",
    name="transactionstatus",
)
CREDENTIAL_STATUS = sa.Enum(
    "ACTIVE", "IN_PROGRESS", "USED", "EXPIRED", "BLOCKED", name="credentialstatus"
)


def _string(length: int) -> sqlmodel.sql.sqltypes.AutoString:
    return sqlmodel.sql.sqltypes.AutoString(length=length)


def _transaction_columns() -> list[sa.Column]:
    """Columns shared by both variant tables."""
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reference", _string(64), nullable=False),
        sa.Column("amount", sa.DECIMAL(precision=12, scale=2), nullable=False),
        sa.Column("liters", sa.Integer(), nullable=False),
        sa.Column("currency", _string(3), nullable=False),
        sa.Column("status", TRANSACTION_STATUS, nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Global reference registry
    op.create_table(
        "transaction_references",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reference", _string(64), nullable=False),
        sa.Column("variant", PAYMENT_VARIANT, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_transaction_references_reference", "transaction_references", ["reference"], unique=True
    )

    # M-Pesa STK push transactions
    op.create_table(
        "mpesa_transactions",
        *_transaction_columns(),
        sa.Column("phone_number", _string(12), nullable=False),
        sa.Column("checkout_request_id", _string(100), nullable=True),
        sa.Column("merchant_request_id", _string(100), nullable=True),
        sa.Column("receipt_number", _string(50), nullable=True),
        sa.Column("transaction_date", _string(20), nullable=True),
        sa.Column("result_code", sa.Integer(), nullable=True),
        sa.Column("result_desc", _string(500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_mpesa_transactions_reference", "mpesa_transactions", ["reference"], unique=True
    )
    op.create_index("ix_mpesa_transactions_status", "mpesa_transactions", ["status"])
    op.create_index("ix_mpesa_transactions_created_at", "mpesa_transactions", ["created_at"])
    op.create_index(
        "ix_mpesa_transactions_checkout_request_id", "mpesa_transactions", ["checkout_request_id"]
    )
    op.create_index(
        "ix_mpesa_transactions_receipt_number", "mpesa_transactions", ["receipt_number"]
    )

    # Paystack hosted checkout transactions
    op.create_table(
        "checkout_transactions",
        *_transaction_columns(),
        sa.Column("email", _string(255), nullable=False),
        sa.Column("phone_number", _string(12), nullable=True),
        # Provider correlation
        sa.Column("provider_reference", _string(100), nullable=True),
        sa.Column("access_code", _string(100), nullable=True),
        sa.Column("authorization_url", _string(500), nullable=True),
        sa.Column("provider_status", _string(50), nullable=True),
        sa.Column("gateway_response", _string(255), nullable=True),
        sa.Column("channel", _string(50), nullable=True),
        sa.Column("customer_id", _string(50), nullable=True),
        # Card / bank authorization
        sa.Column("authorization_code", _string(100), nullable=True),
        sa.Column("card_bin", _string(10), nullable=True),
        sa.Column("card_last4", _string(4), nullable=True),
        sa.Column("card_exp_month", _string(2), nullable=True),
        sa.Column("card_exp_year", _string(4), nullable=True),
        sa.Column("card_type", _string(50), nullable=True),
        sa.Column("bank", _string(100), nullable=True),
        sa.Column("country_code", _string(2), nullable=True),
        sa.Column("card_brand", _string(50), nullable=True),
        sa.Column("reusable", sa.Boolean(), nullable=True),
        sa.Column("card_signature", _string(100), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_checkout_transactions_reference", "checkout_transactions", ["reference"], unique=True
    )
    op.create_index("ix_checkout_transactions_status", "checkout_transactions", ["status"])
    op.create_index(
        "ix_checkout_transactions_created_at", "checkout_transactions", ["created_at"]
    )
    op.create_index(
        "ix_checkout_transactions_provider_reference",
        "checkout_transactions",
        ["provider_reference"],
    )
    op.create_index(
        "ix_checkout_transactions_expires_at", "checkout_transactions", ["expires_at"]
    )

    # One-time dispensing credentials
    op.create_table(
        "credentials",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_reference", _string(64), nullable=False),
        sa.Column("live_reference", _string(64), nullable=True),
        sa.Column("secret_hash", _string(128), nullable=False),
        sa.Column("liters", sa.Integer(), nullable=False),
        sa.Column("status", CREDENTIAL_STATUS, nullable=False),
        sa.Column("station_id", _string(100), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("live_reference"),
    )
    op.create_index(
        "ix_credentials_transaction_reference", "credentials", ["transaction_reference"]
    )
    op.create_index("ix_credentials_status", "credentials", ["status"])
    op.create_index("ix_credentials_expires_at", "credentials", ["expires_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("credentials")
    op.drop_table("checkout_transactions")
    op.drop_table("mpesa_transactions")
    op.drop_table("transaction_references")
