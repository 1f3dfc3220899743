"""Response envelopes shared by all routes.

JSON on the wire is camelCase; snake_case field names are accepted on input
as well.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base for every request and response body."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[T]):
    """Successful response envelope."""

    success: bool = True
    message: str | None = None
    data: T


class ErrorResponse(CamelModel):
    """Error response envelope."""

    success: bool = False
    error_code: str
    error_message: str
    details: dict[str, Any] = {}
