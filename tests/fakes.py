"""
In-process fakes of the payment and SMS providers, plus payload builders.
"""
import hashlib
import hmac
import json
from datetime import timedelta
from typing import Any

import httpx
import redis.asyncio as redis
from sqlalchemy import update

from waterpoint.core.config import Settings
from waterpoint.db import session_scope
from waterpoint.models import Credential, MpesaTransaction
from waterpoint.services import NotificationDispatcher
from waterpoint.utils.helpers import utcnow

PAYSTACK_SECRET = "sk_test_secret"


class FakeDaraja:
    """Minimal Safaricom Daraja sandbox."""

    def __init__(self) -> None:
        self.pushes: list[dict[str, Any]] = []
        self.token_requests = 0
        self.fail_push = False
        self.query_result: dict[str, Any] | None = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/oauth/v1/generate":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "token", "expires_in": "3599"})
        if path == "/mpesa/stkpush/v1/processrequest":
            if self.fail_push:
                return httpx.Response(
                    400,
                    json={
                        "errorCode": "400.002.02",
                        "errorMessage": "Bad Request - Invalid PhoneNumber",
                    },
                )
            payload = json.loads(request.content)
            self.pushes.append(payload)
            return httpx.Response(
                200,
                json={
                    "MerchantRequestID": f"mr-{len(self.pushes)}",
                    "CheckoutRequestID": f"ws_CO_{len(self.pushes)}",
                    "ResponseCode": "0",
                    "CustomerMessage": "Success. Request accepted for processing",
                },
            )
        if path == "/mpesa/stkpushquery/v1/query":
            if self.query_result is None:
                return httpx.Response(
                    500,
                    json={
                        "errorCode": "500.001.1001",
                        "errorMessage": "The transaction is being processed",
                    },
                )
            return httpx.Response(200, json=self.query_result)
        return httpx.Response(404)


class FakePaystack:
    """Minimal Paystack API."""

    def __init__(self) -> None:
        self.initialized: list[dict[str, Any]] = []
        self.verify_status = "success"
        # Replaces the initialize response body when set
        self.initialize_body: Any = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/transaction/initialize":
            payload = json.loads(request.content)
            self.initialized.append(payload)
            if self.initialize_body is not None:
                return httpx.Response(200, json=self.initialize_body)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": (
                            f"https://checkout.paystack.com/{payload['reference']}"
                        ),
                        "access_code": "access-code",
                        "reference": payload["reference"],
                    },
                },
            )
        if path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Verification successful",
                    "data": {
                        "id": 4099260516,
                        "status": self.verify_status,
                        "reference": reference,
                        "gateway_response": "Successful",
                        "paid_at": "2026-10-19T08:00:00.000Z",
                        "channel": "card",
                    },
                },
            )
        return httpx.Response(404)


class RecordingNotifier(NotificationDispatcher):
    """Records dispatched codes instead of sending SMS."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.sent: list[dict[str, Any]] = []

    def dispatch(self, destination: str, code: str, liters: int, ttl_minutes: int) -> None:
        self.sent.append(
            {
                "destination": destination,
                "code": code,
                "liters": liters,
                "ttl_minutes": ttl_minutes,
            }
        )


def mpesa_callback_body(checkout_request_id: str, result_code: int = 0) -> dict[str, Any]:
    """Daraja STK callback payload."""
    callback: dict[str, Any] = {
        "MerchantRequestID": "mr-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully."
        if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 50},
                {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                {"Name": "TransactionDate", "Value": 20261019102115},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def paystack_event(reference: str, event: str = "charge.success") -> bytes:
    return json.dumps(
        {
            "event": event,
            "data": {
                "id": 302961,
                "reference": reference,
                "status": "success" if event == "charge.success" else "failed",
                "gateway_response": "Approved",
                "paid_at": "2026-10-19T08:00:00.000Z",
                "channel": "card",
                "authorization": {"last4": "4081", "bank": "TEST BANK", "card_type": "visa "},
                "customer": {"id": 84312},
            },
        }
    ).encode()


def sign(body: bytes, secret: str = PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


async def backdate_credential(session_factory, reference: str, minutes: int = 11) -> None:
    """Move a reference's credentials past their expiry."""
    async with session_scope(session_factory) as session:
        await session.execute(
            update(Credential)
            .where(Credential.transaction_reference == reference)
            .values(expires_at=utcnow() - timedelta(minutes=minutes))
        )


async def backdate_mpesa(session_factory, reference: str, minutes: int = 31) -> None:
    async with session_scope(session_factory) as session:
        await session.execute(
            update(MpesaTransaction)
            .where(MpesaTransaction.reference == reference)
            .values(created_at=utcnow() - timedelta(minutes=minutes))
        )


class FakeRedis:
    """Dict-backed stand-in for ``redis.asyncio.Redis``."""

    def __init__(self, fail: bool = False) -> None:
        self.store: dict[str, str] = {}
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._check()
        self.store[key] = value

    async def delete(self, key: str) -> None:
        self._check()
        self.store.pop(key, None)
