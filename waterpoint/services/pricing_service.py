"""Waterpoint Gateway - Pricing.

Converts a requested currency amount into whole liters and back. The charged
amount is always ``liters x price_per_liter``, never the raw request.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal

from waterpoint.core.config import Settings
from waterpoint.core.exceptions import OutOfRangeError, ValidationError

logger = logging.getLogger(__name__)

RoundingStrategy = Literal["nearest", "up", "down"]

# Quotients are always positive, so half-up is half-away-from-zero here.
ROUNDING_MODES: dict[str, str] = {
    "nearest": ROUND_HALF_UP,
    "up": ROUND_CEILING,
    "down": ROUND_FLOOR,
}


@dataclass(frozen=True)
class PricePreview:
    """Result of pricing a requested amount."""

    requested_amount: Decimal
    amount: Decimal
    liters: int
    price_per_liter: Decimal
    currency: str
    rounding_strategy: str
    difference: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested_amount": self.requested_amount,
            "amount": self.amount,
            "liters": self.liters,
            "price_per_liter": self.price_per_liter,
            "currency": self.currency,
            "rounding_strategy": self.rounding_strategy,
            "difference": self.difference,
        }


def calculate_liters(amount: Decimal, price_per_liter: Decimal, rounding: str = "nearest") -> int:
    """Whole liters purchasable for ``amount`` under the rounding policy.

    Raises:
        ValueError: If the rounding policy is unknown
    """
    try:
        mode = ROUNDING_MODES[rounding]
    except KeyError:
        raise ValueError(f"Unknown rounding strategy: {rounding}") from None
    quotient = Decimal(amount) / Decimal(price_per_liter)
    return int(quotient.to_integral_value(rounding=mode))


def calculate_amount(liters: int, price_per_liter: Decimal) -> Decimal:
    return Decimal(liters) * Decimal(price_per_liter)


def parse_amount(value: Any) -> Decimal:
    """Coerce a request value into a finite positive Decimal.

    Raises:
        ValidationError: If the value is not numeric, not finite or not positive
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number") from None
    if not amount.is_finite():
        raise ValidationError("Amount must be a finite number")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return amount


class PricingEngine:
    """Price previews against the configured unit price and bounds."""

    def __init__(self, settings: Settings) -> None:
        self.price_per_liter = settings.price_per_liter
        self.currency = settings.currency
        self.min_amount = settings.min_amount
        self.max_amount = settings.max_amount
        self.rounding_strategy = settings.rounding_strategy

    def preview(self, amount: Any) -> PricePreview:
        """Price a requested amount.

        Args:
            amount: Requested amount (number or numeric string)

        Returns:
            PricePreview with the adjusted amount that will be charged

        Raises:
            ValidationError: INVALID_INPUT for non-numeric / non-positive input
            OutOfRangeError: If the amount is outside bounds or buys zero liters
        """
        requested = parse_amount(amount)
        if requested < self.min_amount or requested > self.max_amount:
            raise OutOfRangeError(
                f"Amount must be between {self.min_amount} and {self.max_amount} {self.currency}",
                {"min_amount": str(self.min_amount), "max_amount": str(self.max_amount)},
            )

        liters = calculate_liters(requested, self.price_per_liter, self.rounding_strategy)
        if liters <= 0:
            raise OutOfRangeError(
                f"Amount {requested} {self.currency} does not buy a whole liter",
                {"price_per_liter": str(self.price_per_liter)},
            )

        adjusted = calculate_amount(liters, self.price_per_liter)
        return PricePreview(
            requested_amount=requested,
            amount=adjusted,
            liters=liters,
            price_per_liter=self.price_per_liter,
            currency=self.currency,
            rounding_strategy=self.rounding_strategy,
            difference=adjusted - requested,
        )

    def pricing_info(self) -> dict[str, Any]:
        """Current price, bounds and the liter range they allow."""
        return {
            "price_per_liter": self.price_per_liter,
            "currency": self.currency,
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "min_liters": max(
                1, calculate_liters(self.min_amount, self.price_per_liter, self.rounding_strategy)
            ),
            "max_liters": calculate_liters(
                self.max_amount, self.price_per_liter, self.rounding_strategy
            ),
            "rounding_strategy": self.rounding_strategy,
        }
