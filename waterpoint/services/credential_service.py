"""Waterpoint Gateway - One-time credential issuance and customer verification.

Credentials are the hashed one-time codes a customer types at a station.
The plaintext leaves this module exactly once, in the result of ``issue``.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from waterpoint.core.config import Settings
from waterpoint.core.exceptions import (
    ConflictError,
    DomainStateError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from waterpoint.db.engine import SessionFactory, session_scope
from waterpoint.models.credential import LIVE_STATUSES, Credential, CredentialStatus
from waterpoint.models.transaction import TransactionStatus
from waterpoint.services.cache_service import CredentialCache
from waterpoint.services.lookup import find_transaction
from waterpoint.utils.codes import generate_code, hash_code, verify_code
from waterpoint.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MSG_NOT_FOUND = "OTP not found or expired"
MSG_EXPIRED = "OTP has expired"
MSG_ALREADY_USED = "OTP has already been used"
MSG_BLOCKED = "OTP has been blocked due to too many failed attempts"


@dataclass(frozen=True)
class IssuedCredential:
    """Plaintext code plus metadata, returned once at issuance."""

    code: str
    transaction_reference: str
    liters: int
    expires_at: datetime
    expires_in_minutes: int

    def __repr__(self) -> str:
        return (
            f"IssuedCredential(transaction_reference={self.transaction_reference!r}, "
            f"liters={self.liters}, expires_at={self.expires_at!r})"
        )


class CredentialStore:
    """Durable credential reads and conditional writes shared by the issuer
    and the station authorizer.

    Every state change is a single ``UPDATE ... WHERE status IN (...)``; a
    zero row count means another writer got there first.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory,
        cache: CredentialCache | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._cache = cache or CredentialCache(None)
        self.hash_algorithm = settings.otp_hash_algorithm

    # ============ Reads ============

    async def get_current(self, reference: str) -> Credential | None:
        """The live credential for a reference, else the most recent one."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Credential)
                .where(
                    Credential.transaction_reference == reference,
                    Credential.status.in_(LIVE_STATUSES),
                )
                .order_by(Credential.id.desc())
                .limit(1)
            )
            credential = result.scalar_one_or_none()
            if credential is not None:
                return credential

            result = await session.execute(
                select(Credential)
                .where(Credential.transaction_reference == reference)
                .order_by(Credential.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_cached_or_current(self, reference: str) -> dict[str, Any] | None:
        """Credential metadata for read-only status checks."""
        cached = await self._cache.get(reference)
        if cached is not None:
            return cached
        credential = await self.get_current(reference)
        if credential is None:
            return None
        if credential.status in LIVE_STATUSES:
            await self._cache.store(credential)
        return CredentialCache.serialize(credential) | {"expires_at": credential.expires_at}

    async def matches_superseded(self, reference: str, code: str) -> bool:
        """Whether ``code`` belongs to an already-expired credential."""
        candidate = hash_code(code, self.hash_algorithm)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Credential.secret_hash).where(
                    Credential.transaction_reference == reference,
                    Credential.status == CredentialStatus.EXPIRED,
                )
            )
            hashes = result.scalars().all()
        return any(hmac.compare_digest(candidate, stored) for stored in hashes)

    # ============ Conditional writes ============

    async def expire(self, credential: Credential) -> bool:
        """CAS live -> expired. Returns True if this call made the transition."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Credential)
                .where(
                    Credential.id == credential.id,
                    Credential.status.in_(LIVE_STATUSES),
                )
                .values(status=CredentialStatus.EXPIRED, live_reference=None)
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1
        if changed:
            logger.info(f"Credential expired: reference={credential.transaction_reference}")
            await self._cache.invalidate(credential.transaction_reference)
        return changed

    async def register_failed_attempt(self, credential: Credential) -> Credential:
        """Atomically count a wrong code and block at the attempt limit.

        Returns:
            The credential as stored after the increment
        """
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(Credential)
                .where(
                    Credential.id == credential.id,
                    Credential.status.in_(LIVE_STATUSES),
                )
                .values(attempts=Credential.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(Credential)
                .where(
                    Credential.id == credential.id,
                    Credential.status.in_(LIVE_STATUSES),
                    Credential.attempts >= Credential.max_attempts,
                )
                .values(status=CredentialStatus.BLOCKED, live_reference=None)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                select(Credential)
                .where(Credential.id == credential.id)
                .execution_options(populate_existing=True)
            )
            updated = result.scalar_one()

        if updated.status == CredentialStatus.BLOCKED:
            logger.warning(
                f"Credential blocked after {updated.attempts} failed attempts: "
                f"reference={updated.transaction_reference}"
            )
            await self._cache.invalidate(updated.transaction_reference)
        else:
            await self._cache.store(updated)
        return updated

    async def check_usable(self, credential: Credential | None, now: datetime) -> Credential:
        """Apply the not-found / expired / used / blocked guards.

        Raises:
            NotFoundError: No credential for the reference
            DomainStateError: EXPIRED, ALREADY_USED or BLOCKED
        """
        if credential is None:
            raise NotFoundError(MSG_NOT_FOUND)
        if credential.status == CredentialStatus.EXPIRED:
            raise DomainStateError(MSG_EXPIRED, code=ErrorCode.EXPIRED)
        if credential.status in LIVE_STATUSES and credential.is_expired(now):
            await self.expire(credential)
            raise DomainStateError(MSG_EXPIRED, code=ErrorCode.EXPIRED)
        if credential.status == CredentialStatus.USED:
            raise DomainStateError(MSG_ALREADY_USED, code=ErrorCode.ALREADY_USED)
        if credential.status == CredentialStatus.BLOCKED:
            raise DomainStateError(MSG_BLOCKED, code=ErrorCode.BLOCKED)
        return credential

    async def reject_code(self, credential: Credential, code: str) -> DomainStateError:
        """Build the error for a non-matching code, counting the attempt."""
        if await self.matches_superseded(credential.transaction_reference, code):
            return DomainStateError(
                "OTP has expired. A newer OTP was issued for this transaction",
                code=ErrorCode.EXPIRED,
            )
        updated = await self.register_failed_attempt(credential)
        if updated.status == CredentialStatus.BLOCKED:
            return DomainStateError(MSG_BLOCKED, code=ErrorCode.BLOCKED)
        remaining = updated.remaining_attempts
        return DomainStateError(
            f"Invalid OTP. {remaining} attempt(s) remaining",
            {"remaining_attempts": remaining},
            code=ErrorCode.INVALID_CODE,
        )


class CredentialIssuer(CredentialStore):
    """Issues credentials for completed transactions and serves the
    customer-facing verify and status calls.

    Usage:
        issuer = CredentialIssuer(settings, session_factory, cache)
        issued = await issuer.issue("WS-1702345678000-ABCD1234")
    """

    MAX_ISSUE_ATTEMPTS = 3

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory,
        cache: CredentialCache | None = None,
    ) -> None:
        super().__init__(settings, session_factory, cache)
        self.code_length = settings.otp_length
        self.ttl_minutes = settings.otp_expiration_minutes
        self.max_attempts = settings.otp_max_attempts

    # ============ Issuance ============

    async def issue(self, reference: str, liters: Any = None) -> IssuedCredential:
        """Issue a new credential, expiring any live one for the reference.

        Args:
            reference: Transaction reference (either variant)
            liters: Optional caller expectation; must match the transaction

        Returns:
            IssuedCredential carrying the only copy of the plaintext code

        Raises:
            NotFoundError: TRANSACTION_NOT_FOUND
            DomainStateError: TRANSACTION_NOT_COMPLETED, or ALREADY_USED once dispensed
            ValidationError: If ``liters`` disagrees with the transaction
            ConflictError: If concurrent issuance kept winning the race
        """
        async with session_scope(self._session_factory) as session:
            transaction = await find_transaction(session, reference)

        if transaction is None:
            raise NotFoundError(
                f"Transaction {reference} not found",
                code=ErrorCode.TRANSACTION_NOT_FOUND,
            )
        if transaction.status != TransactionStatus.COMPLETED:
            raise DomainStateError(
                f"Transaction {reference} is not completed (status: {transaction.status.value})",
                {"status": transaction.status.value},
                code=ErrorCode.TRANSACTION_NOT_COMPLETED,
            )
        if liters is not None:
            self._check_liters(liters, transaction.liters)

        for attempt in range(1, self.MAX_ISSUE_ATTEMPTS + 1):
            code = generate_code(self.code_length)
            now = utcnow()
            credential = Credential(
                transaction_reference=reference,
                live_reference=reference,
                secret_hash=hash_code(code, self.hash_algorithm),
                liters=transaction.liters,
                status=CredentialStatus.ACTIVE,
                attempts=0,
                max_attempts=self.max_attempts,
                expires_at=now + timedelta(minutes=self.ttl_minutes),
                created_at=now,
                updated_at=now,
            )
            try:
                async with session_scope(self._session_factory) as session:
                    # A payment whose water was dispensed never gets another code
                    consumed = await session.execute(
                        select(Credential.id)
                        .where(
                            Credential.transaction_reference == reference,
                            Credential.status == CredentialStatus.USED,
                        )
                        .limit(1)
                    )
                    if consumed.scalar_one_or_none() is not None:
                        raise DomainStateError(
                            f"Water for {reference} has already been dispensed",
                            code=ErrorCode.ALREADY_USED,
                        )
                    superseded = await session.execute(
                        update(Credential)
                        .where(
                            Credential.transaction_reference == reference,
                            Credential.status.in_(LIVE_STATUSES),
                        )
                        .values(status=CredentialStatus.EXPIRED, live_reference=None)
                        .execution_options(synchronize_session=False)
                    )
                    superseded_count = superseded.rowcount
                    session.add(credential)
            except IntegrityError:
                logger.warning(
                    f"Concurrent credential issuance for {reference}, retry {attempt}"
                )
                continue

            if superseded_count:
                logger.info(f"Expired {superseded_count} previous credential(s) for {reference}")
            logger.info(
                f"Credential issued: reference={reference} liters={transaction.liters} "
                f"expires_at={credential.expires_at.isoformat()}"
            )
            await self._cache.store(credential)
            return IssuedCredential(
                code=code,
                transaction_reference=reference,
                liters=transaction.liters,
                expires_at=credential.expires_at,
                expires_in_minutes=self.ttl_minutes,
            )

        raise ConflictError(
            f"Could not issue a credential for {reference}, please retry",
            code=ErrorCode.IN_USE_ELSEWHERE,
        )

    async def issue_once_for(self, reference: str) -> IssuedCredential | None:
        """Issue on payment completion unless the reference already has one.

        Duplicate provider deliveries of a success event land here more than
        once; only the first finds no credential.
        """
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Credential.id)
                .where(Credential.transaction_reference == reference)
                .limit(1)
            )
            existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info(f"Credential already exists for {reference}, skipping issuance")
            return None
        return await self.issue(reference)

    @staticmethod
    def _check_liters(requested: Any, actual: int) -> None:
        try:
            value = Decimal(str(requested))
        except (InvalidOperation, ValueError):
            raise ValidationError("Liters must be a positive number") from None
        if not value.is_finite() or value <= 0:
            raise ValidationError("Liters must be a positive number")
        if value != actual:
            raise ValidationError(
                f"Liters {requested} do not match the {actual}L paid for",
                {"liters": actual},
            )

    # ============ Customer-facing ============

    async def verify(self, reference: str, code: str) -> dict[str, Any]:
        """Verify a code outside a station and consume it.

        Raises:
            NotFoundError, DomainStateError, ConflictError
        """
        now = utcnow()
        credential = await self.check_usable(await self.get_current(reference), now)
        if credential.status == CredentialStatus.IN_PROGRESS:
            raise ConflictError(
                f"OTP is already in use at station {credential.station_id}",
                code=ErrorCode.IN_USE_ELSEWHERE,
            )

        if not verify_code(code, credential.secret_hash, self.hash_algorithm):
            raise await self.reject_code(credential, code)

        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Credential)
                .where(
                    Credential.id == credential.id,
                    Credential.status == CredentialStatus.ACTIVE,
                    Credential.attempts < Credential.max_attempts,
                    Credential.expires_at > now,
                )
                .values(
                    status=CredentialStatus.USED,
                    live_reference=None,
                    verified_at=now,
                    used_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount == 1
        if not claimed:
            # Lost a race with a station, the sweeper or another verify
            raise DomainStateError(MSG_ALREADY_USED, code=ErrorCode.ALREADY_USED)

        await self._cache.invalidate(reference)
        logger.info(f"Credential verified by customer: reference={reference}")
        return {
            "transaction_reference": reference,
            "liters": credential.liters,
            "verified_at": now,
        }

    async def status(self, reference: str) -> dict[str, Any]:
        """Metadata-only view of the reference's current credential."""
        data = await self.get_cached_or_current(reference)
        if data is None:
            return {"exists": False, "status": None}
        return describe_credential(data, utcnow())


def describe_credential(data: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Status view with expiry recomputed; never includes the hash."""
    status = data["status"]
    if status in (CredentialStatus.ACTIVE.value, CredentialStatus.IN_PROGRESS.value):
        if data["expires_at"] <= now:
            status = CredentialStatus.EXPIRED.value
    return {
        "exists": True,
        "status": status,
        "expires_at": data["expires_at"],
        "attempts": data["attempts"],
        "max_attempts": data["max_attempts"],
        "remaining_attempts": max(0, data["max_attempts"] - data["attempts"]),
        "liters": data["liters"],
    }
