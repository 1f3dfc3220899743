"""Exception handlers rendering the error envelope.

    {"success": false, "errorCode": "...", "errorMessage": "...", "details": {...}}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel

from waterpoint.core.exceptions import ErrorCode, WaterpointError
from waterpoint.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


def error_response(
    status_code: int, code: ErrorCode, message: str, details: dict | None = None
) -> JSONResponse:
    camel_details = {to_camel(key): value for key, value in (details or {}).items()}
    body = ErrorResponse(error_code=code.value, error_message=message, details=camel_details)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


async def waterpoint_error_handler(request: Request, exc: WaterpointError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code.value} {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    message = errors[0]["message"] if errors else "Invalid request"
    return error_response(400, ErrorCode.INVALID_INPUT, message, {"errors": errors})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(500, ErrorCode.INTERNAL_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WaterpointError, waterpoint_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
