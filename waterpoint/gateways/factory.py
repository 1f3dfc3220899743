"""Payment gateway factory.

Builds one adapter per payment variant. The application creates them once in
its lifespan and closes them on shutdown.
"""

import logging

from waterpoint.core.config import Settings
from waterpoint.gateways.base import PaymentGateway
from waterpoint.models.transaction import PaymentVariant

logger = logging.getLogger(__name__)


def build_gateways(settings: Settings) -> dict[PaymentVariant, PaymentGateway]:
    """Create the adapter for each supported variant."""
    from waterpoint.gateways.mpesa import MpesaGateway
    from waterpoint.gateways.paystack import PaystackGateway

    return {
        PaymentVariant.MOBILE_PUSH: MpesaGateway(settings),
        PaymentVariant.HOSTED_CHECKOUT: PaystackGateway(settings),
    }


async def close_gateways(gateways: dict[PaymentVariant, PaymentGateway]) -> None:
    """Close all gateway HTTP clients."""
    for variant, gateway in gateways.items():
        try:
            await gateway.aclose()
        except Exception as e:
            logger.error(f"Error closing {variant.value} gateway: {e}")
