"""Kenyan mobile number normalisation for M-Pesa and SMS."""

import re

_SUBSCRIBER_RE = re.compile(r"^7\d{8}$")


class InvalidPhoneNumber(ValueError):
    """Phone number cannot be normalised to 2547XXXXXXXX."""


def normalize_phone_number(phone_number: str | None) -> str:
    """Normalise a Kenyan number to the 12-digit ``2547XXXXXXXX`` form.

    Accepts ``+254712345678``, ``254712345678``, ``0712345678`` and
    ``712345678``; spaces and dashes are ignored.

    Raises:
        InvalidPhoneNumber: If the number is missing or not a Kenyan mobile
    """
    if not phone_number or not isinstance(phone_number, str):
        raise InvalidPhoneNumber("Phone number is required")

    cleaned = re.sub(r"[^\d+]", "", phone_number)

    if cleaned.startswith("+254"):
        normalized = cleaned[1:]
    elif cleaned.startswith("254"):
        normalized = cleaned
    elif cleaned.startswith("0"):
        normalized = "254" + cleaned[1:]
    elif len(cleaned) == 9:
        normalized = "254" + cleaned
    else:
        raise InvalidPhoneNumber("Invalid phone number format")

    if len(normalized) != 12:
        raise InvalidPhoneNumber("Phone number must be 12 digits (254XXXXXXXXX)")
    if not _SUBSCRIBER_RE.match(normalized[3:]):
        raise InvalidPhoneNumber("Invalid Kenyan phone number format")
    return normalized
