"""Waterpoint Gateway - One-time dispensing credential model."""

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from waterpoint.utils.helpers import utcnow


class CredentialStatus(str, Enum):
    """Credential status.

    State transitions:
    - active -> in_progress (station verified) -> used (station completed)
    - active -> expired (TTL passed or replaced by a newer credential)
    - active -> blocked (too many wrong codes)
    - active -> used (customer-side verification)
    """

    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    USED = "used"
    EXPIRED = "expired"
    BLOCKED = "blocked"


LIVE_STATUSES = (CredentialStatus.ACTIVE, CredentialStatus.IN_PROGRESS)


class Credential(SQLModel, table=True):
    """Hashed one-time code authorizing a single dispensing event.

    Rows are never deleted; every change is a status transition.

    Attributes:
        transaction_reference: Reference of the paid transaction (either variant)
        live_reference: Equals transaction_reference while the credential is
            active or in_progress, NULL otherwise. The unique index on it
            allows at most one live credential per transaction.
        secret_hash: Hex digest of the plaintext code
        liters: Snapshot of the transaction's liters at issuance
        station_id: Station the credential is locked to after first verify
    """

    __tablename__ = "credentials"

    id: int | None = Field(default=None, primary_key=True)
    transaction_reference: str = Field(max_length=64, index=True)
    live_reference: str | None = Field(default=None, max_length=64, unique=True)
    secret_hash: str = Field(max_length=128)
    liters: int
    status: CredentialStatus = Field(default=CredentialStatus.ACTIVE, index=True)
    station_id: str | None = Field(default=None, max_length=100)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)

    expires_at: datetime = Field(index=True, sa_type=sa.DateTime)
    verified_at: datetime | None = Field(default=None, sa_type=sa.DateTime)
    used_at: datetime | None = Field(default=None, sa_type=sa.DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=sa.DateTime)
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=sa.DateTime,
        sa_column_kwargs={"onupdate": utcnow},
    )

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
