"""Waterpoint Gateway - OTP schemas.

Customer-facing and station-facing credential requests and views. None of
the views carry the code hash; only ``OtpIssued`` carries a plaintext code.
"""

from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, Field

from waterpoint.schemas.common import CamelModel
from waterpoint.utils.helpers import render_fields

OTP_PATTERN = r"^\d{4,10}$"

# ============ Customer Schemas ============


class OtpGenerateRequest(CamelModel):
    transaction_reference: str = Field(..., max_length=64)
    liters: Decimal | None = Field(
        default=None, gt=0, description="Optional; must match the liters paid for"
    )


class OtpIssued(CamelModel):
    """Plaintext code, returned only by the generate call."""

    otp: str
    transaction_reference: str
    liters: int
    expires_at: str | None
    expires_in_minutes: int


class OtpVerifyRequest(CamelModel):
    transaction_reference: str = Field(..., max_length=64)
    otp: str = Field(
        ..., validation_alias=AliasChoices("otp", "code"), pattern=OTP_PATTERN,
        description="Numeric one-time code",
    )


class OtpVerified(CamelModel):
    transaction_reference: str
    liters: int
    verified_at: str | None = None


class OtpStatus(CamelModel):
    exists: bool
    status: str | None = None
    expires_at: str | None = None
    attempts: int | None = None
    max_attempts: int | None = None
    remaining_attempts: int | None = None
    liters: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OtpStatus":
        return cls(**render_fields(data, cls.model_fields))


# ============ Station Schemas ============


class StationVerifyRequest(CamelModel):
    transaction_reference: str = Field(..., max_length=64)
    otp: str = Field(
        ..., validation_alias=AliasChoices("otp", "code"), pattern=OTP_PATTERN,
        description="Code typed at the station",
    )
    station_id: str = Field(..., min_length=1, max_length=100)


class StationCompleteRequest(CamelModel):
    transaction_reference: str = Field(..., max_length=64)
    station_id: str = Field(..., min_length=1, max_length=100)


class DispenseAuthorization(CamelModel):
    """Station may dispense ``pulses`` flow-meter pulses."""

    transaction_reference: str
    station_id: str
    liters: int
    pulses: int
    status: str
    verified_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DispenseAuthorization":
        return cls(**render_fields(data, cls.model_fields))


class DispenseCompleted(CamelModel):
    transaction_reference: str
    station_id: str
    status: str
    used_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DispenseCompleted":
        return cls(**render_fields(data, cls.model_fields))


class StationOtpStatus(OtpStatus):
    pulses: int | None = None
    station_id: str | None = None
    is_locked_to_different_station: bool | None = None
    can_use: bool | None = None
