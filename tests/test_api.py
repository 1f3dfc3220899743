"""
HTTP API tests through the FastAPI app.

Bodies and query parameters are camelCase on the wire; snake_case input is
still accepted.
"""
import json

import pytest
from httpx import AsyncClient

from fakes import mpesa_callback_body, paystack_event, sign


async def initiate_mpesa(client: AsyncClient, amount: float = 50) -> dict:
    response = await client.post(
        "/api/payments/mpesa/initiate",
        json={"phoneNumber": "0712345678", "amount": amount},
    )
    assert response.status_code == 201
    return response.json()["data"]


async def pay_mpesa(client: AsyncClient) -> str:
    data = await initiate_mpesa(client)
    response = await client.post(
        "/api/payments/mpesa/callback", json=mpesa_callback_body(data["providerHandle"])
    )
    assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}
    return data["transactionReference"]


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestHealthAndPricing:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_pricing(self, client: AsyncClient) -> None:
        response = await client.get("/api/payments/pricing")

        data = response.json()["data"]
        assert data["pricePerLiter"] == 5
        assert data["currency"] == "KES"
        assert data["maxLiters"] == 14000

    @pytest.mark.asyncio
    async def test_preview(self, client: AsyncClient) -> None:
        response = await client.post("/api/payments/preview", json={"amount": 52})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {
            "requestedAmount": 52,
            "amount": 50,
            "liters": 10,
            "pricePerLiter": 5,
            "currency": "KES",
            "roundingStrategy": "nearest",
            "difference": -2,
        }

    @pytest.mark.asyncio
    async def test_preview_out_of_range(self, client: AsyncClient) -> None:
        response = await client.post("/api/payments/preview", json={"amount": 1})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["errorCode"] == "OUT_OF_RANGE"
        assert "errorMessage" in body

    @pytest.mark.asyncio
    async def test_preview_invalid_amount(self, client: AsyncClient) -> None:
        response = await client.post("/api/payments/preview", json={"amount": "abc"})

        assert response.status_code == 400
        body = response.json()
        assert body["errorCode"] == "INVALID_INPUT"
        assert body["details"]["errors"][0]["field"] == "amount"


class TestMpesaFlow:
    @pytest.mark.asyncio
    async def test_purchase_to_dispense(self, client: AsyncClient, notifier) -> None:
        initiated = await initiate_mpesa(client, 52)
        assert initiated["amount"] == 50
        assert initiated["liters"] == 10
        assert initiated["status"] == "processing"
        reference = initiated["transactionReference"]

        ack = await client.post(
            "/api/payments/mpesa/callback",
            json=mpesa_callback_body(initiated["providerHandle"]),
        )
        assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

        status = await client.get(f"/api/payments/status/{reference}")
        assert status.json()["data"]["status"] == "completed"
        assert status.json()["data"]["receiptNumber"] == "NLJ7RT61SV"

        code = notifier.sent[0]["code"]
        assert notifier.sent[0]["destination"] == "254712345678"

        verified = await client.post(
            "/api/stations/otp/verify",
            json={"transactionReference": reference, "code": code, "stationId": "STATION-01"},
        )
        assert verified.status_code == 200
        assert verified.json()["data"]["pulses"] == 10000
        assert verified.json()["data"]["stationId"] == "STATION-01"

        station_status = await client.get(
            f"/api/stations/otp/status/{reference}", params={"stationId": "STATION-01"}
        )
        assert station_status.json()["data"]["status"] == "in_progress"
        assert station_status.json()["data"]["canUse"] is True
        assert station_status.json()["data"]["isLockedToDifferentStation"] is False

        completed = await client.post(
            "/api/stations/otp/complete",
            json={"transactionReference": reference, "stationId": "STATION-01"},
        )
        assert completed.json()["data"]["status"] == "used"

        again = await client.post(
            "/api/stations/otp/verify",
            json={"transactionReference": reference, "code": code, "stationId": "STATION-01"},
        )
        assert again.status_code == 400
        assert again.json()["errorCode"] == "ALREADY_USED"

    @pytest.mark.asyncio
    async def test_no_new_code_after_dispensing(self, client: AsyncClient, notifier) -> None:
        reference = await pay_mpesa(client)
        payload = {"transactionReference": reference, "stationId": "STATION-01"}
        await client.post(
            "/api/stations/otp/verify", json=payload | {"code": notifier.sent[0]["code"]}
        )
        await client.post("/api/stations/otp/complete", json=payload)

        response = await client.post(
            "/api/otp/generate", json={"transactionReference": reference}
        )

        assert response.status_code == 400
        assert response.json()["errorCode"] == "ALREADY_USED"
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_garbage_callback_is_acknowledged(self, client: AsyncClient) -> None:
        response = await client.post("/api/payments/mpesa/callback", content=b"not json")

        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    @pytest.mark.asyncio
    async def test_list_callback_is_acknowledged(self, client: AsyncClient) -> None:
        response = await client.post("/api/payments/mpesa/callback", json=[1, 2])

        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    @pytest.mark.asyncio
    async def test_invalid_phone(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/payments/mpesa/initiate", json={"phoneNumber": "12345", "amount": 50}
        )

        assert response.status_code == 400
        assert response.json()["errorCode"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_snake_case_input_accepted(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/payments/mpesa/initiate", json={"phone_number": "0712345678", "amount": 50}
        )

        assert response.status_code == 201
        assert response.json()["data"]["phoneNumber"] == "254712345678"

    @pytest.mark.asyncio
    async def test_provider_rejection(self, client: AsyncClient, daraja) -> None:
        daraja.fail_push = True

        response = await client.post(
            "/api/payments/mpesa/initiate", json={"phoneNumber": "0712345678", "amount": 50}
        )

        assert response.status_code == 502
        body = response.json()
        assert body["errorCode"] == "UPSTREAM_ERROR"
        reference = body["details"]["transactionReference"]
        status = await client.get(f"/api/payments/status/{reference}")
        assert status.json()["data"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_unknown_status(self, client: AsyncClient) -> None:
        response = await client.get("/api/payments/status/WS-0-DEADBEEF")

        assert response.status_code == 404
        assert response.json()["success"] is False


class TestPaystackWebhook:
    @pytest.mark.asyncio
    async def test_bad_signature(self, client: AsyncClient) -> None:
        body = paystack_event("WS-1-ABCD")

        response = await client.post(
            "/api/payments/paystack/webhook",
            content=body,
            headers={"X-Paystack-Signature": sign(body, "sk_forged")},
        )

        assert response.status_code == 401
        assert response.json()["errorCode"] == "INVALID_SIGNATURE"

    @pytest.mark.asyncio
    async def test_charge_success(self, client: AsyncClient, paystack) -> None:
        initiated = await client.post(
            "/api/payments/paystack/initiate",
            json={"email": "buyer@example.com", "amount": 50, "phoneNumber": "0712345678"},
        )
        assert initiated.status_code == 201
        data = initiated.json()["data"]
        assert data["redirectUrl"].startswith("https://checkout.paystack.com/")
        reference = data["transactionReference"]
        body = paystack_event(reference)

        response = await client.post(
            "/api/payments/paystack/webhook",
            content=body,
            headers={"X-Paystack-Signature": sign(body)},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Webhook processed successfully"}
        status = await client.get(f"/api/payments/status/{reference}")
        assert status.json()["data"]["status"] == "completed"
        assert status.json()["data"]["channel"] == "card"

    @pytest.mark.asyncio
    async def test_non_object_initialize_response(self, client: AsyncClient, paystack) -> None:
        paystack.initialize_body = []

        response = await client.post(
            "/api/payments/paystack/initiate",
            json={"email": "buyer@example.com", "amount": 50},
        )

        assert response.status_code == 502
        body = response.json()
        assert body["errorCode"] == "UPSTREAM_ERROR"
        reference = body["details"]["transactionReference"]
        status = await client.get(f"/api/payments/status/{reference}")
        assert status.json()["data"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_processing_failure_still_200(self, client: AsyncClient) -> None:
        body = json.dumps({"event": "charge.success"}).encode()

        response = await client.post(
            "/api/payments/paystack/webhook",
            content=body,
            headers={"X-Paystack-Signature": sign(body)},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_browser_callback(self, client: AsyncClient) -> None:
        initiated = await client.post(
            "/api/payments/paystack/initiate",
            json={"email": "buyer@example.com", "amount": 50},
        )
        reference = initiated.json()["data"]["transactionReference"]

        response = await client.get(
            "/api/payments/paystack/callback", params={"trxref": reference}
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "completed"
        assert response.json()["message"] == "Payment completed"

    @pytest.mark.asyncio
    async def test_browser_callback_reports_failure(self, client: AsyncClient, paystack) -> None:
        paystack.verify_status = "failed"
        initiated = await client.post(
            "/api/payments/paystack/initiate",
            json={"email": "buyer@example.com", "amount": 50},
        )
        reference = initiated.json()["data"]["transactionReference"]

        response = await client.get(
            "/api/payments/paystack/callback", params={"reference": reference}
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "failed"
        assert response.json()["message"] == "Payment failed"

    @pytest.mark.asyncio
    async def test_browser_callback_without_reference(self, client: AsyncClient) -> None:
        response = await client.get("/api/payments/paystack/callback")

        assert response.status_code == 400


class TestOtpRoutes:
    @pytest.mark.asyncio
    async def test_generate(self, client: AsyncClient) -> None:
        reference = await pay_mpesa(client)

        response = await client.post(
            "/api/otp/generate", json={"transactionReference": reference, "liters": 10}
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert len(data["otp"]) == 6
        assert data["liters"] == 10
        assert data["expiresInMinutes"] == 10
        assert data["expiresAt"].endswith("Z")

    @pytest.mark.asyncio
    async def test_generate_unknown(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/otp/generate", json={"transactionReference": "WS-0-DEADBEEF"}
        )

        assert response.status_code == 404
        assert response.json()["errorCode"] == "TRANSACTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_generate_not_completed(self, client: AsyncClient) -> None:
        initiated = await initiate_mpesa(client)

        response = await client.post(
            "/api/otp/generate",
            json={"transactionReference": initiated["transactionReference"]},
        )

        assert response.status_code == 400
        assert response.json()["errorCode"] == "TRANSACTION_NOT_COMPLETED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("otp", ["abcdef", "12345", "12"])
    async def test_verify_rejects_malformed_code(self, client: AsyncClient, otp) -> None:
        response = await client.post(
            "/api/otp/verify", json={"transactionReference": "WS-0-DEADBEEF", "code": otp}
        )

        assert response.status_code == 400
        assert response.json()["errorCode"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_verify_and_status(self, client: AsyncClient, notifier) -> None:
        reference = await pay_mpesa(client)
        code = notifier.sent[0]["code"]

        wrong = await client.post(
            "/api/otp/verify",
            json={"transactionReference": reference, "code": wrong_code(code)},
        )
        assert wrong.status_code == 400
        assert wrong.json()["errorCode"] == "INVALID_CODE"
        assert wrong.json()["details"] == {"remainingAttempts": 2}

        status = await client.get(f"/api/otp/status/{reference}")
        data = status.json()["data"]
        assert data["attempts"] == 1
        assert data["remainingAttempts"] == 2
        assert "otp" not in data
        assert "secretHash" not in data

        ok = await client.post(
            "/api/otp/verify", json={"transactionReference": reference, "otp": code}
        )
        assert ok.status_code == 200
        assert ok.json()["data"]["liters"] == 10


class TestStationRoutes:
    @pytest.mark.asyncio
    async def test_other_station_forbidden(self, client: AsyncClient, notifier) -> None:
        reference = await pay_mpesa(client)
        code = notifier.sent[0]["code"]
        payload = {"transactionReference": reference, "code": code}

        first = await client.post(
            "/api/stations/otp/verify", json=payload | {"stationId": "STATION-01"}
        )
        second = await client.post(
            "/api/stations/otp/verify", json=payload | {"stationId": "STATION-02"}
        )

        assert first.status_code == 200
        assert second.status_code == 403
        assert second.json()["errorCode"] == "FORBIDDEN_STATION_LOCK"
        assert second.json()["details"] == {"lockedStationId": "STATION-01"}

        status = await client.get(
            f"/api/stations/otp/status/{reference}", params={"stationId": "STATION-02"}
        )
        assert status.json()["data"]["isLockedToDifferentStation"] is True
        assert status.json()["data"]["canUse"] is False

    @pytest.mark.asyncio
    async def test_snake_case_station_body(self, client: AsyncClient, notifier) -> None:
        reference = await pay_mpesa(client)

        response = await client.post(
            "/api/stations/otp/verify",
            json={
                "transaction_reference": reference,
                "otp": notifier.sent[0]["code"],
                "station_id": "STATION-01",
            },
        )

        assert response.status_code == 200
        assert response.json()["data"]["transactionReference"] == reference

    @pytest.mark.asyncio
    async def test_complete_from_other_station_conflicts(
        self, client: AsyncClient, notifier
    ) -> None:
        reference = await pay_mpesa(client)
        await client.post(
            "/api/stations/otp/verify",
            json={
                "transactionReference": reference,
                "code": notifier.sent[0]["code"],
                "stationId": "STATION-01",
            },
        )

        response = await client.post(
            "/api/stations/otp/complete",
            json={"transactionReference": reference, "stationId": "STATION-02"},
        )

        assert response.status_code == 409
        assert response.json()["errorCode"] == "IN_USE_ELSEWHERE"

    @pytest.mark.asyncio
    async def test_missing_station_id(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/stations/otp/verify",
            json={"transactionReference": "WS-0-DEADBEEF", "code": "123456"},
        )

        assert response.status_code == 400
        assert response.json()["details"]["errors"][0]["field"] == "stationId"
