"""Common FastAPI dependencies for API endpoints."""

from typing import Annotated

from fastapi import Depends, Request

from waterpoint.core.config import Settings
from waterpoint.services import (
    CredentialIssuer,
    DispensingAuthorizer,
    PricingEngine,
    ServiceContainer,
    TransactionLedger,
)


def get_services(request: Request) -> ServiceContainer:
    """Service container built during application startup."""
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]


def get_app_settings(services: Services) -> Settings:
    return services.settings


def get_pricing(services: Services) -> PricingEngine:
    return services.pricing


def get_ledger(services: Services) -> TransactionLedger:
    return services.ledger


def get_issuer(services: Services) -> CredentialIssuer:
    return services.issuer


def get_authorizer(services: Services) -> DispensingAuthorizer:
    return services.authorizer


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Pricing = Annotated[PricingEngine, Depends(get_pricing)]
Ledger = Annotated[TransactionLedger, Depends(get_ledger)]
Issuer = Annotated[CredentialIssuer, Depends(get_issuer)]
Authorizer = Annotated[DispensingAuthorizer, Depends(get_authorizer)]
