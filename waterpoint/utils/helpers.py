"""Time and serialization helpers."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

import httpx


def utcnow() -> datetime:
    """Current UTC time as a naive datetime.

    All timestamps are stored as naive UTC so comparisons behave the same on
    MySQL and SQLite.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_utc_datetime(dt: datetime | None) -> str | None:
    """Format datetime to ISO string with Z suffix for UTC.

    Args:
        dt: datetime object (assumed UTC) or None

    Returns:
        ISO format string with Z suffix (e.g., "2026-01-10T10:30:00Z") or None
    """
    if dt is None:
        return None
    return f"{dt.isoformat()}Z"


def to_number(value: Decimal | None) -> float | int | None:
    """Render a stored Decimal as a JSON number, keeping integers integral."""
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def json_number(value: Any) -> Any:
    return to_number(value) if isinstance(value, Decimal) else value


def render_fields(data: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Keep known fields, turning Decimals into numbers and datetimes into UTC strings."""
    rendered: dict[str, Any] = {}
    for key, value in data.items():
        if key not in fields:
            continue
        if isinstance(value, datetime):
            value = format_utc_datetime(value)
        rendered[key] = json_number(value)
    return rendered


def json_or_empty(response: httpx.Response) -> dict[str, Any]:
    """Response body as a dict; anything else (HTML, list, blank) becomes {}."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
