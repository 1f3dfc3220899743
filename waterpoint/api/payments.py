"""Waterpoint Gateway - Payment API routes.

Pricing, payment initiation for both variants, provider callbacks and the
unified transaction status.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Query, Request, status
from fastapi.responses import JSONResponse

from waterpoint.api.deps import Ledger, Pricing
from waterpoint.api.errors import error_response
from waterpoint.core.exceptions import SignatureError, ValidationError
from waterpoint.models.transaction import PaymentVariant
from waterpoint.schemas.common import ApiResponse, ErrorResponse
from waterpoint.schemas.payment import (
    InitiationView,
    MpesaInitiateRequest,
    PaystackInitiateRequest,
    PreviewRequest,
    PriceQuote,
    PricingInfo,
    TransactionView,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])

# Body M-Pesa expects back from a result callback
MPESA_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


# ============ Pricing ============


@router.get("/pricing", response_model=ApiResponse[PricingInfo])
async def get_pricing(pricing: Pricing):
    """Current price per liter and amount bounds."""
    return ApiResponse(data=PricingInfo.from_dict(pricing.pricing_info()))


@router.post(
    "/preview",
    response_model=ApiResponse[PriceQuote],
    responses={400: {"model": ErrorResponse}},
)
async def preview_payment(request: PreviewRequest, pricing: Pricing):
    """Price an amount without charging anything."""
    preview = pricing.preview(request.amount)
    return ApiResponse(
        message="Payment preview generated", data=PriceQuote.from_preview(preview)
    )


# ============ Initiation ============


@router.post(
    "/mpesa/initiate",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[InitiationView],
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def initiate_mpesa_payment(request: MpesaInitiateRequest, ledger: Ledger):
    """Send an STK push prompt to the customer's phone."""
    result = await ledger.initiate(
        PaymentVariant.MOBILE_PUSH,
        request.amount,
        request.phone_number,
        description=request.description,
        metadata=request.metadata,
    )
    return ApiResponse(
        message="M-Pesa payment initiated. Please enter your PIN.",
        data=InitiationView.from_dict(result),
    )


@router.post(
    "/paystack/initiate",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[InitiationView],
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def initiate_paystack_payment(request: PaystackInitiateRequest, ledger: Ledger):
    """Open a hosted checkout; redirect the customer to ``redirect_url``."""
    result = await ledger.initiate(
        PaymentVariant.HOSTED_CHECKOUT,
        request.amount,
        request.email,
        phone_number=request.phone_number,
        description=request.description,
        metadata=request.metadata,
    )
    return ApiResponse(
        message="Payment checkout initialized. Redirect customer to redirectUrl.",
        data=InitiationView.from_dict(result),
    )


# ============ Provider callbacks ============


@router.post("/mpesa/callback")
async def mpesa_callback(request: Request, ledger: Ledger):
    """Receive the STK push result from Safaricom.

    Always acknowledged; M-Pesa retries on anything else.
    """
    body = await request.body()
    try:
        result = await ledger.handle_callback(PaymentVariant.MOBILE_PUSH, body)
        logger.info(f"M-Pesa callback handled: {result}")
    except Exception as e:
        logger.exception(f"M-Pesa callback error: {e}")
    return MPESA_ACK


@router.post("/paystack/webhook")
async def paystack_webhook(
    request: Request,
    ledger: Ledger,
    x_paystack_signature: Annotated[str | None, Header()] = None,
):
    """Receive Paystack charge events (HMAC-SHA512 signed)."""
    body = await request.body()
    try:
        result = await ledger.handle_callback(
            PaymentVariant.HOSTED_CHECKOUT, body, x_paystack_signature
        )
    except SignatureError as e:
        return error_response(e.status_code, e.code, e.message)
    except Exception as e:
        logger.exception(f"Paystack webhook error: {e}")
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"success": False, "message": "Webhook processing failed"},
        )
    logger.info(f"Paystack webhook handled: {result}")
    return {"success": True, "message": "Webhook processed successfully"}


@router.get("/paystack/callback", response_model=ApiResponse[TransactionView])
async def paystack_browser_callback(
    ledger: Ledger,
    reference: Annotated[str | None, Query()] = None,
    trxref: Annotated[str | None, Query()] = None,
):
    """Browser lands here after checkout; confirm the payment with Paystack."""
    reference = reference or trxref
    if not reference:
        raise ValidationError("Missing transaction reference")
    result = await ledger.verify_payment(reference)
    return ApiResponse(
        message=f"Payment {result['status']}",
        data=TransactionView.from_dict(result),
    )


# ============ Status ============


@router.post(
    "/verify/{reference}",
    response_model=ApiResponse[TransactionView],
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def verify_payment(reference: str, ledger: Ledger):
    """Ask the provider for the latest state of a transaction."""
    result = await ledger.verify_payment(reference)
    return ApiResponse(data=TransactionView.from_dict(result))


@router.get(
    "/status/{reference}",
    response_model=ApiResponse[TransactionView],
    responses={404: {"model": ErrorResponse}},
)
async def get_payment_status(reference: str, ledger: Ledger):
    """Unified view of a transaction of either variant."""
    result = await ledger.get_status(reference)
    return ApiResponse(data=TransactionView.from_dict(result))
