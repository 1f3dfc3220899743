"""Waterpoint Gateway - Station-side credential verification.

State transitions driven here:
- active -> in_progress (correct code, station lock acquired)
- active -> blocked (max_attempts wrong codes)
- active / in_progress -> expired (verified after TTL)
- in_progress -> used (station reports dispensing finished)
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func, or_, update

from waterpoint.core.config import Settings
from waterpoint.core.exceptions import (
    ConflictError,
    DomainStateError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
)
from waterpoint.db.engine import SessionFactory, session_scope
from waterpoint.models.credential import LIVE_STATUSES, Credential, CredentialStatus
from waterpoint.services.cache_service import CredentialCache
from waterpoint.services.credential_service import CredentialStore, describe_credential
from waterpoint.utils.codes import verify_code
from waterpoint.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def calculate_pulses(liters: int | Decimal, pulses_per_liter: int) -> int:
    """Hardware pulse count for a volume, rounded half-up."""
    value = Decimal(liters) * Decimal(pulses_per_liter)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class DispensingAuthorizer(CredentialStore):
    """Verifies codes presented at stations and authorizes dispensing.

    Usage:
        authorizer = DispensingAuthorizer(settings, session_factory, cache)
        result = await authorizer.verify(reference, "123456", "STATION-01")
        # result["pulses"] drives the flow meter
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory,
        cache: CredentialCache | None = None,
    ) -> None:
        super().__init__(settings, session_factory, cache)
        self.pulses_per_liter = settings.station_pulses_per_liter
        self.enforce_lock = settings.station_enforce_lock

    def _check_station(self, credential: Credential, station_id: str) -> None:
        if self.enforce_lock and credential.station_id and credential.station_id != station_id:
            raise ForbiddenError(
                f"OTP is locked to station {credential.station_id} "
                f"and cannot be used at station {station_id}",
                {"locked_station_id": credential.station_id},
            )
        if (
            credential.status == CredentialStatus.IN_PROGRESS
            and credential.station_id != station_id
        ):
            raise ConflictError(
                f"OTP is already in use at station {credential.station_id}",
                {"station_id": credential.station_id},
            )

    async def verify(self, reference: str, code: str, station_id: str) -> dict[str, Any]:
        """Verify a code at a station and lock the credential to it.

        Args:
            reference: Transaction reference
            code: Code typed by the customer
            station_id: Calling station

        Returns:
            Dict with liters, pulses, status and verified_at

        Raises:
            NotFoundError: No credential (404)
            DomainStateError: EXPIRED, ALREADY_USED, BLOCKED or INVALID_CODE (400)
            ForbiddenError: Locked to another station (403)
            ConflictError: In progress at another station (409)
        """
        now = utcnow()
        credential = await self.check_usable(await self.get_current(reference), now)
        self._check_station(credential, station_id)

        if not verify_code(code, credential.secret_hash, self.hash_algorithm):
            error = await self.reject_code(credential, code)
            logger.warning(
                f"Station verification failed: reference={reference} station={station_id} "
                f"code={error.code.value}"
            )
            raise error

        claimed = await self._claim(credential, station_id, now)
        if claimed is None:
            # Someone else changed the row since we read it; report its new state
            current = await self.get_current(reference)
            await self.check_usable(current, utcnow())
            self._check_station(current, station_id)
            raise ConflictError(
                "OTP state changed during verification, please retry",
                code=ErrorCode.IN_USE_ELSEWHERE,
            )

        pulses = calculate_pulses(claimed.liters, self.pulses_per_liter)
        logger.info(
            f"Station verified: reference={reference} station={station_id} "
            f"liters={claimed.liters} pulses={pulses}"
        )
        return {
            "transaction_reference": reference,
            "station_id": station_id,
            "liters": claimed.liters,
            "pulses": pulses,
            "status": CredentialStatus.IN_PROGRESS.value,
            "verified_at": now,
        }

    async def _claim(
        self, credential: Credential, station_id: str, now: datetime
    ) -> Credential | None:
        """CAS to in_progress; the lock is taken only if free or already ours."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Credential)
                .where(
                    Credential.id == credential.id,
                    Credential.status.in_(LIVE_STATUSES),
                    Credential.attempts < Credential.max_attempts,
                    Credential.expires_at > now,
                    or_(Credential.station_id.is_(None), Credential.station_id == station_id),
                )
                .values(
                    status=CredentialStatus.IN_PROGRESS,
                    station_id=func.coalesce(Credential.station_id, station_id),
                    verified_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            claimed = await session.get(Credential, credential.id, populate_existing=True)

        await self._cache.store(claimed)
        return claimed

    async def complete(self, reference: str, station_id: str) -> dict[str, Any]:
        """Station reports dispensing finished: in_progress -> used.

        Raises:
            NotFoundError: No credential in progress for the reference
            ConflictError: The credential is in progress at another station
        """
        now = utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Credential)
                .where(
                    Credential.transaction_reference == reference,
                    Credential.status == CredentialStatus.IN_PROGRESS,
                    Credential.station_id == station_id,
                )
                .values(status=CredentialStatus.USED, live_reference=None, used_at=now)
                .execution_options(synchronize_session=False)
            )
            completed = result.rowcount == 1

        if not completed:
            current = await self.get_current(reference)
            if current is not None and current.status == CredentialStatus.IN_PROGRESS:
                raise ConflictError(
                    f"OTP is in use at station {current.station_id}",
                    {"station_id": current.station_id},
                )
            if current is not None and current.status == CredentialStatus.USED:
                raise DomainStateError(
                    "Dispensing already completed", code=ErrorCode.ALREADY_USED
                )
            raise NotFoundError(f"No dispensing in progress for {reference}")

        await self._cache.invalidate(reference)
        logger.info(f"Dispensing completed: reference={reference} station={station_id}")
        return {
            "transaction_reference": reference,
            "station_id": station_id,
            "status": CredentialStatus.USED.value,
            "used_at": now,
        }

    async def status(self, reference: str, station_id: str | None = None) -> dict[str, Any]:
        """Read-only status for a station; never mutates."""
        data = await self.get_cached_or_current(reference)
        if data is None:
            return {"exists": False, "status": None}

        now = utcnow()
        view = describe_credential(data, now)
        locked_elsewhere = bool(
            self.enforce_lock and data.get("station_id") and data["station_id"] != station_id
        )
        view.update(
            {
                "pulses": calculate_pulses(data["liters"], self.pulses_per_liter),
                "station_id": data.get("station_id"),
                "is_locked_to_different_station": locked_elsewhere,
                "can_use": view["status"]
                not in (
                    CredentialStatus.EXPIRED.value,
                    CredentialStatus.USED.value,
                    CredentialStatus.BLOCKED.value,
                )
                and not locked_elsewhere,
            }
        )
        return view
