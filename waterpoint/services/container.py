"""Service wiring.

Builds every service once per process from explicit collaborators. The API
keeps the container on ``app.state``; Celery tasks build their own.
"""

import logging
from dataclasses import dataclass, field

import redis.asyncio as redis

from waterpoint.core.config import Settings
from waterpoint.db.engine import SessionFactory
from waterpoint.gateways.base import PaymentGateway
from waterpoint.gateways.factory import build_gateways, close_gateways
from waterpoint.models.transaction import PaymentVariant
from waterpoint.services.cache_service import CredentialCache
from waterpoint.services.credential_service import CredentialIssuer
from waterpoint.services.dispensing_service import DispensingAuthorizer
from waterpoint.services.ledger_service import TransactionLedger
from waterpoint.services.notification_service import NotificationDispatcher
from waterpoint.services.pricing_service import PricingEngine
from waterpoint.services.sweeper_service import ReconciliationSweeper

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """All services sharing one session factory, cache and gateway set."""

    settings: Settings
    session_factory: SessionFactory
    pricing: PricingEngine
    cache: CredentialCache
    issuer: CredentialIssuer
    authorizer: DispensingAuthorizer
    ledger: TransactionLedger
    sweeper: ReconciliationSweeper
    gateways: dict[PaymentVariant, PaymentGateway] = field(default_factory=dict)
    notifier: NotificationDispatcher | None = None

    async def aclose(self) -> None:
        await close_gateways(self.gateways)
        if self.notifier is not None:
            await self.notifier.aclose()


def build_services(
    settings: Settings,
    session_factory: SessionFactory,
    *,
    redis_client: redis.Redis | None = None,
    gateways: dict[PaymentVariant, PaymentGateway] | None = None,
    notifier: NotificationDispatcher | None = None,
) -> ServiceContainer:
    """Wire services together; pass gateways/notifier to override defaults."""
    if gateways is None:
        gateways = build_gateways(settings)
    if notifier is None:
        notifier = NotificationDispatcher(settings)

    cache = CredentialCache(redis_client, settings.otp_cache_ttl_seconds)
    pricing = PricingEngine(settings)
    issuer = CredentialIssuer(settings, session_factory, cache)
    authorizer = DispensingAuthorizer(settings, session_factory, cache)
    ledger = TransactionLedger(settings, session_factory, gateways, pricing, issuer, notifier)
    sweeper = ReconciliationSweeper(settings, session_factory)

    logger.info(
        f"Services ready: variants={[v.value for v in gateways]} "
        f"cache={'on' if cache.enabled else 'off'}"
    )
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        pricing=pricing,
        cache=cache,
        issuer=issuer,
        authorizer=authorizer,
        ledger=ledger,
        sweeper=sweeper,
        gateways=gateways,
        notifier=notifier,
    )
