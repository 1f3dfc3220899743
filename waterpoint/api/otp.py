"""Waterpoint Gateway - Customer OTP routes."""

from fastapi import APIRouter, status

from waterpoint.api.deps import AppSettings, Issuer
from waterpoint.core.config import Settings
from waterpoint.core.exceptions import ValidationError
from waterpoint.schemas.common import ApiResponse, ErrorResponse
from waterpoint.schemas.otp import (
    OtpGenerateRequest,
    OtpIssued,
    OtpStatus,
    OtpVerified,
    OtpVerifyRequest,
)
from waterpoint.utils.helpers import format_utc_datetime

router = APIRouter(prefix="/otp", tags=["OTP"])


def check_otp_format(otp: str, settings: Settings) -> None:
    if len(otp) != settings.otp_length or not otp.isdigit():
        raise ValidationError(f"OTP must be a {settings.otp_length}-digit string")


@router.post(
    "/generate",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[OtpIssued],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def generate_otp(request: OtpGenerateRequest, issuer: Issuer):
    """Issue a fresh code for a completed transaction.

    Any earlier code for the same transaction stops working.
    """
    issued = await issuer.issue(request.transaction_reference, request.liters)
    return ApiResponse(
        message="OTP generated successfully",
        data=OtpIssued(
            otp=issued.code,
            transaction_reference=issued.transaction_reference,
            liters=issued.liters,
            expires_at=format_utc_datetime(issued.expires_at),
            expires_in_minutes=issued.expires_in_minutes,
        ),
    )


@router.post(
    "/verify",
    response_model=ApiResponse[OtpVerified],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def verify_otp(request: OtpVerifyRequest, issuer: Issuer, settings: AppSettings):
    check_otp_format(request.otp, settings)
    result = await issuer.verify(request.transaction_reference, request.otp)
    return ApiResponse(
        message="OTP verified successfully",
        data=OtpVerified(
            transaction_reference=result["transaction_reference"],
            liters=result["liters"],
            verified_at=format_utc_datetime(result["verified_at"]),
        ),
    )


@router.get("/status/{reference}", response_model=ApiResponse[OtpStatus])
async def get_otp_status(reference: str, issuer: Issuer):
    """Credential metadata; never includes the code."""
    result = await issuer.status(reference)
    return ApiResponse(data=OtpStatus.from_dict(result))
