"""Waterpoint Service Layer.

Business logic services for the Waterpoint gateway. Each service receives its
settings, session factory and collaborators through its constructor.
"""

from waterpoint.services.cache_service import CredentialCache
from waterpoint.services.container import ServiceContainer, build_services
from waterpoint.services.credential_service import CredentialIssuer, IssuedCredential
from waterpoint.services.dispensing_service import DispensingAuthorizer, calculate_pulses
from waterpoint.services.ledger_service import TransactionLedger
from waterpoint.services.notification_service import DeliveryResult, NotificationDispatcher
from waterpoint.services.pricing_service import PricePreview, PricingEngine
from waterpoint.services.sweeper_service import ReconciliationSweeper

__all__ = [
    "CredentialCache",
    "CredentialIssuer",
    "DeliveryResult",
    "DispensingAuthorizer",
    "IssuedCredential",
    "NotificationDispatcher",
    "PricePreview",
    "PricingEngine",
    "ReconciliationSweeper",
    "ServiceContainer",
    "TransactionLedger",
    "build_services",
    "calculate_pulses",
]
