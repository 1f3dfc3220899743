"""Waterpoint Gateway - Reconciliation sweeper.

Expires stale transactions and credentials in bulk. Called by the Celery
beat task on a fixed interval.
"""

import logging
from datetime import timedelta

from sqlalchemy import update

from waterpoint.core.config import Settings
from waterpoint.db.engine import SessionFactory, session_scope
from waterpoint.models.credential import Credential, CredentialStatus
from waterpoint.models.transaction import (
    OPEN_STATUSES,
    CheckoutTransaction,
    MpesaTransaction,
    TransactionStatus,
)
from waterpoint.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class ReconciliationSweeper:
    """Idempotent expiry passes over transactions and credentials.

    Each pass is one conditional bulk UPDATE in its own session, so a failure
    in one does not stop the others and overlapping runs are harmless.

    Usage (via Celery reconciliation task):
        sweeper = ReconciliationSweeper(settings, session_factory)
        counts = await sweeper.sweep_once()
    """

    def __init__(self, settings: Settings, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self.mpesa_timeout = timedelta(minutes=settings.mpesa_timeout_minutes)

    async def expire_mobile_push(self) -> int:
        """pending/processing STK pushes older than the timeout -> timeout."""
        now = utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(MpesaTransaction)
                .where(
                    MpesaTransaction.status.in_(OPEN_STATUSES),
                    MpesaTransaction.created_at < now - self.mpesa_timeout,
                )
                .values(status=TransactionStatus.TIMEOUT, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def expire_hosted_checkout(self) -> int:
        """pending/processing checkouts past expires_at -> expired."""
        now = utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(CheckoutTransaction)
                .where(
                    CheckoutTransaction.status.in_(OPEN_STATUSES),
                    CheckoutTransaction.expires_at < now,
                )
                .values(status=TransactionStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def expire_credentials(self) -> int:
        """active credentials past expires_at -> expired."""
        now = utcnow()
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Credential)
                .where(
                    Credential.status == CredentialStatus.ACTIVE,
                    Credential.expires_at < now,
                )
                .values(status=CredentialStatus.EXPIRED, live_reference=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def sweep_once(self) -> dict[str, int | None]:
        """Run every pass once.

        Returns:
            Rows transitioned per pass; None for a pass that failed
        """
        passes = {
            "mobile_push": self.expire_mobile_push,
            "hosted_checkout": self.expire_hosted_checkout,
            "credentials": self.expire_credentials,
        }
        counts: dict[str, int | None] = {}
        for name, run in passes.items():
            try:
                counts[name] = await run()
            except Exception as e:
                logger.exception(f"[sweep] {name} pass failed: {e}")
                counts[name] = None

        if any(counts.values()):
            logger.info(f"[sweep] expired {counts}")
        else:
            logger.debug(f"[sweep] nothing to expire {counts}")
        return counts
