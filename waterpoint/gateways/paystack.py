"""Paystack hosted checkout adapter.

Documentation: https://paystack.com/docs/api/
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from waterpoint.core.config import Settings
from waterpoint.gateways.base import (
    CallbackEvent,
    GatewayError,
    InitiationResult,
    PaymentGateway,
    VerificationResult,
)
from waterpoint.models.transaction import PaymentVariant, TransactionStatus
from waterpoint.utils.helpers import json_or_empty

logger = logging.getLogger(__name__)

# Paystack transaction status -> our terminal status
STATUS_MAP: dict[str, TransactionStatus] = {
    "success": TransactionStatus.COMPLETED,
    "failed": TransactionStatus.FAILED,
    "abandoned": TransactionStatus.CANCELLED,
    "reversed": TransactionStatus.CANCELLED,
}

# Webhook event -> our terminal status; unlisted events are logged and ignored
EVENT_MAP: dict[str, TransactionStatus] = {
    "charge.success": TransactionStatus.COMPLETED,
    "charge.failed": TransactionStatus.FAILED,
}


def parse_paystack_datetime(value: str | None) -> datetime | None:
    """Parse Paystack's ISO timestamps into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def extract_correlation(data: dict[str, Any]) -> dict[str, Any]:
    """Pull write-once correlation fields out of a transaction payload."""
    correlation: dict[str, Any] = {
        "provider_status": data.get("status"),
        "gateway_response": data.get("gateway_response"),
        "channel": data.get("channel"),
        "paid_at": parse_paystack_datetime(data.get("paid_at") or data.get("paidAt")),
    }
    if data.get("id") is not None:
        correlation["provider_reference"] = str(data["id"])

    auth = data.get("authorization")
    if isinstance(auth, dict) and auth:
        correlation.update(
            {
                "authorization_code": auth.get("authorization_code"),
                "card_bin": auth.get("bin"),
                "card_last4": auth.get("last4"),
                "card_exp_month": auth.get("exp_month"),
                "card_exp_year": auth.get("exp_year"),
                "card_type": (auth.get("card_type") or "").strip() or None,
                "bank": auth.get("bank"),
                "country_code": auth.get("country_code"),
                "card_brand": auth.get("brand"),
                "reusable": auth.get("reusable"),
                "card_signature": auth.get("signature"),
            }
        )

    customer = data.get("customer")
    if isinstance(customer, dict) and customer.get("id") is not None:
        correlation["customer_id"] = str(customer["id"])

    return {key: value for key, value in correlation.items() if value is not None}


class PaystackGateway(PaymentGateway):
    """Paystack transaction initialize / verify / webhook adapter."""

    signed_callbacks = True

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._secret_key = settings.paystack_secret_key
        self._callback_url = settings.paystack_callback_url
        self._currency = settings.paystack_currency
        self._client = client or httpx.AsyncClient(
            base_url=settings.paystack_base_url,
            timeout=settings.http_timeout_seconds,
            headers={"Authorization": f"Bearer {settings.paystack_secret_key}"},
        )

    @property
    def variant(self) -> PaymentVariant:
        return PaymentVariant.HOSTED_CHECKOUT

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise GatewayError(f"Paystack {action} timed out", 504) from None
        except httpx.RequestError as e:
            raise GatewayError(f"Paystack {action} failed: {e}") from e

        body = json_or_empty(response)
        if response.status_code >= 400 or not body.get("status"):
            detail = body.get("message") or response.text or f"HTTP {response.status_code}"
            raise GatewayError(f"Paystack {action} failed: {detail}", response.status_code)
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    # ============ Payment Operations ============

    async def initiate(
        self,
        amount: Decimal,
        reference: str,
        destination: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitiationResult:
        # Paystack amounts are in the currency's minor unit
        minor_units = int(
            (Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
        payload = {
            "email": destination,
            "amount": minor_units,
            "reference": reference,
            "currency": self._currency,
            "callback_url": self._callback_url,
            "metadata": {**(metadata or {}), "description": description},
        }
        data = await self._request("POST", "/transaction/initialize", "initialize", json=payload)

        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise GatewayError("Paystack initialize response missing authorization_url")

        logger.info(f"Paystack checkout initialized: reference={reference}")
        return InitiationResult(
            provider_handle=data.get("reference") or reference,
            redirect_url=authorization_url,
            correlation={
                "access_code": data.get("access_code"),
                "authorization_url": authorization_url,
            },
        )

    async def verify(self, provider_handle: str) -> VerificationResult:
        data = await self._request("GET", f"/transaction/verify/{provider_handle}", "verify")
        provider_status = data.get("status")
        correlation = extract_correlation(data)
        return VerificationResult(
            status=STATUS_MAP.get(provider_status or ""),
            paid_at=correlation.get("paid_at"),
            message=data.get("gateway_response"),
            correlation=correlation,
        )

    def parse_callback(self, raw: dict[str, Any]) -> CallbackEvent:
        """Parse a Paystack webhook event body."""
        if not isinstance(raw, dict):
            raise GatewayError("Invalid Paystack webhook payload", 400)
        event_type = raw.get("event")
        data = raw.get("data")
        if not event_type or not isinstance(data, dict):
            raise GatewayError("Invalid Paystack webhook payload", 400)

        reference = data.get("reference")
        return CallbackEvent(
            provider_handle=reference,
            reference=reference,
            status=EVENT_MAP.get(event_type),
            result_code=data.get("status"),
            event_type=event_type,
            message=data.get("gateway_response"),
            metadata=data.get("metadata") or {},
            correlation=extract_correlation(data),
        )

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """HMAC-SHA512 of the raw body keyed with the secret key."""
        if not signature or not self._secret_key:
            return False
        expected = hmac.new(
            self._secret_key.encode("utf-8"),
            raw_body,
            hashlib.sha512,
        ).hexdigest()
        return hmac.compare_digest(expected, signature.lower())

    async def aclose(self) -> None:
        await self._client.aclose()
