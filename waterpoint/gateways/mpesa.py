"""M-Pesa (Safaricom Daraja) STK push adapter.

Documentation: https://developer.safaricom.co.ke/
"""

import base64
import logging
import time
from datetime import datetime
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

# Daraja STK result codes
RESULT_SUCCESS = 0
RESULT_CANCELLED = 1032
RESULT_TIMEOUT = 1037

# STK query error code while the customer has not answered the prompt yet
STILL_PROCESSING = "500.001.1001"


def map_result_code(result_code: int | str | None) -> TransactionStatus | None:
    """Map an STK result code to a terminal transaction status."""
    if result_code is None or result_code == "":
        return None
    try:
        code = int(result_code)
    except (TypeError, ValueError):
        return TransactionStatus.FAILED
    if code == RESULT_SUCCESS:
        return TransactionStatus.COMPLETED
    if code == RESULT_CANCELLED:
        return TransactionStatus.CANCELLED
    if code == RESULT_TIMEOUT:
        return TransactionStatus.TIMEOUT
    return TransactionStatus.FAILED


class MpesaGateway(PaymentGateway):
    """Lipa na M-Pesa online (STK push) adapter.

    The OAuth token is cached on the instance for TOKEN_TTL_SECONDS.
    """

    TOKEN_TTL_SECONDS = 55 * 60
    OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
    STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
    STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._consumer_key = settings.mpesa_consumer_key
        self._consumer_secret = settings.mpesa_consumer_secret
        self._passkey = settings.mpesa_passkey
        self._shortcode = settings.mpesa_shortcode
        self._callback_url = settings.mpesa_callback_url
        self._environment = settings.mpesa_environment
        self._client = client or httpx.AsyncClient(
            base_url=settings.mpesa_base_url,
            timeout=settings.http_timeout_seconds,
        )
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def variant(self) -> PaymentVariant:
        return PaymentVariant.MOBILE_PUSH

    # ============ Auth ============

    async def get_access_token(self) -> str:
        """Get a cached or fresh OAuth access token.

        Raises:
            GatewayError: If Daraja rejects the credentials or is unreachable
        """
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        auth = base64.b64encode(
            f"{self._consumer_key}:{self._consumer_secret}".encode()
        ).decode()
        try:
            response = await self._client.get(
                self.OAUTH_PATH,
                headers={"Authorization": f"Basic {auth}"},
            )
        except httpx.TimeoutException:
            raise GatewayError("Daraja OAuth timed out", 504) from None
        except httpx.RequestError as e:
            raise GatewayError(f"Daraja OAuth failed: {e}") from e

        data = json_or_empty(response)
        if response.status_code >= 400 or not data.get("access_token"):
            detail = data.get("error_description") or data.get("errorMessage") or response.text
            raise GatewayError(f"Daraja OAuth failed: {detail}", response.status_code)

        self._access_token = data["access_token"]
        self._token_expires_at = time.monotonic() + self.TOKEN_TTL_SECONDS
        logger.info(f"Daraja OAuth token refreshed ({self._environment})")
        return self._access_token

    def _password(self, timestamp: str) -> str:
        raw = f"{self._shortcode}{self._passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime("%Y%m%d%H%M%S")

    async def _post(self, path: str, payload: dict[str, Any], action: str) -> dict[str, Any]:
        token = await self.get_access_token()
        try:
            response = await self._client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException:
            raise GatewayError(f"{action} timed out", 504) from None
        except httpx.RequestError as e:
            raise GatewayError(f"{action} failed: {e}") from e

        data = json_or_empty(response)
        if response.status_code >= 400 or data.get("errorCode"):
            detail = (
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or response.text
                or f"HTTP {response.status_code}"
            )
            raise GatewayError(
                f"{action} failed: {detail}",
                response.status_code,
                provider_code=data.get("errorCode"),
            )
        return data

    # ============ Payment Operations ============

    async def initiate(
        self,
        amount: Decimal,
        reference: str,
        destination: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InitiationResult:
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self._shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerBuyGoodsOnline",
            # Daraja only accepts whole shillings
            "Amount": int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            "PartyA": destination,
            "PartyB": self._shortcode,
            "PhoneNumber": destination,
            "CallBackURL": self._callback_url,
            "AccountReference": reference,
            "TransactionDesc": description or "Water Purchase",
        }
        data = await self._post(self.STK_PUSH_PATH, payload, "STK push")

        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise GatewayError("STK push response missing CheckoutRequestID")

        logger.info(f"STK push accepted: reference={reference} checkout={checkout_request_id}")
        return InitiationResult(
            provider_handle=checkout_request_id,
            prompt=data.get("CustomerMessage"),
            correlation={
                "checkout_request_id": checkout_request_id,
                "merchant_request_id": data.get("MerchantRequestID"),
            },
        )

    async def verify(self, provider_handle: str) -> VerificationResult:
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self._shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": provider_handle,
        }
        try:
            data = await self._post(self.STK_QUERY_PATH, payload, "STK query")
        except GatewayError as e:
            if e.provider_code == STILL_PROCESSING:
                return VerificationResult(status=None, message=e.message)
            raise
        result_code = data.get("ResultCode")
        status = map_result_code(result_code)
        return VerificationResult(
            status=status,
            result_code=_int_or_none(result_code),
            message=data.get("ResultDesc"),
            correlation={
                "result_code": _int_or_none(result_code),
                "result_desc": data.get("ResultDesc"),
            },
        )

    def parse_callback(self, raw: dict[str, Any]) -> CallbackEvent:
        """Parse a Daraja ``Body.stkCallback`` payload."""
        body = raw.get("Body") if isinstance(raw, dict) else None
        callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(callback, dict):
            raise GatewayError("Missing stkCallback in callback data", 400)

        checkout_request_id = callback.get("CheckoutRequestID")
        if not checkout_request_id:
            raise GatewayError("Missing CheckoutRequestID in callback data", 400)

        result_code = callback.get("ResultCode")
        callback_metadata = callback.get("CallbackMetadata")
        items = callback_metadata.get("Item") if isinstance(callback_metadata, dict) else None
        metadata = {
            item.get("Name"): item.get("Value")
            for item in items or []
            if isinstance(item, dict) and item.get("Name")
        }

        correlation: dict[str, Any] = {
            "merchant_request_id": callback.get("MerchantRequestID"),
            "result_code": _int_or_none(result_code),
            "result_desc": callback.get("ResultDesc"),
        }
        if metadata.get("MpesaReceiptNumber"):
            correlation["receipt_number"] = str(metadata["MpesaReceiptNumber"])
        if metadata.get("TransactionDate"):
            correlation["transaction_date"] = str(metadata["TransactionDate"])

        return CallbackEvent(
            provider_handle=checkout_request_id,
            status=map_result_code(result_code),
            result_code=_int_or_none(result_code),
            message=callback.get("ResultDesc"),
            metadata=metadata,
            correlation=correlation,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
