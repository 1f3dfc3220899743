"""Waterpoint Utility Functions.

Common helper functions and utilities used across the application.
"""

from waterpoint.utils.codes import generate_code, hash_code, verify_code
from waterpoint.utils.helpers import format_utc_datetime, utcnow
from waterpoint.utils.phone import InvalidPhoneNumber, normalize_phone_number
from waterpoint.utils.reference import generate_reference

__all__ = [
    "InvalidPhoneNumber",
    "format_utc_datetime",
    "generate_code",
    "generate_reference",
    "hash_code",
    "normalize_phone_number",
    "utcnow",
    "verify_code",
]
