"""Waterpoint Gateway - Station routes.

Called by dispensing stations: verify the code the customer typed, get the
pulse count for the flow meter, and report when dispensing is finished.
"""

from typing import Annotated

from fastapi import APIRouter, Query

from waterpoint.api.deps import AppSettings, Authorizer
from waterpoint.api.otp import check_otp_format
from waterpoint.schemas.common import ApiResponse, ErrorResponse
from waterpoint.schemas.otp import (
    DispenseAuthorization,
    DispenseCompleted,
    StationCompleteRequest,
    StationOtpStatus,
    StationVerifyRequest,
)

router = APIRouter(prefix="/stations/otp", tags=["Stations"])


@router.post(
    "/verify",
    response_model=ApiResponse[DispenseAuthorization],
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def verify_station_otp(
    request: StationVerifyRequest, authorizer: Authorizer, settings: AppSettings
):
    """Verify a code at a station and lock it to that station."""
    check_otp_format(request.otp, settings)
    result = await authorizer.verify(
        request.transaction_reference, request.otp, request.station_id
    )
    return ApiResponse(
        message="OTP verified successfully. Dispensing authorized.",
        data=DispenseAuthorization.from_dict(result),
    )


@router.get("/status/{reference}", response_model=ApiResponse[StationOtpStatus])
async def get_station_otp_status(
    reference: str,
    authorizer: Authorizer,
    station_id: Annotated[str | None, Query(alias="stationId", max_length=100)] = None,
):
    result = await authorizer.status(reference, station_id)
    return ApiResponse(data=StationOtpStatus.from_dict(result))


@router.post(
    "/complete",
    response_model=ApiResponse[DispenseCompleted],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def complete_dispensing(request: StationCompleteRequest, authorizer: Authorizer):
    """Station reports that dispensing finished; the code is consumed."""
    result = await authorizer.complete(request.transaction_reference, request.station_id)
    return ApiResponse(
        message="Dispensing completed", data=DispenseCompleted.from_dict(result)
    )
