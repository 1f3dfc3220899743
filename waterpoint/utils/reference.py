"""Transaction reference generation."""

import secrets
import time

REFERENCE_PREFIX = "WS"


def generate_reference(prefix: str = REFERENCE_PREFIX) -> str:
    """Generate an opaque transaction reference.

    Format: PREFIX-timestamp_ms-random_hex(8), e.g. WS-1702345678000-ABCD1234
    """
    timestamp = int(time.time() * 1000)
    random_suffix = secrets.token_hex(4).upper()
    return f"{prefix}-{timestamp}-{random_suffix}"
