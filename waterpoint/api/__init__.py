"""API module - route handlers and common dependencies."""

from fastapi import FastAPI

from waterpoint.api.errors import register_exception_handlers

__all__ = [
    "register_exception_handlers",
    "register_routers",
]


def register_routers(app: FastAPI) -> None:
    """Register all API routers to the application.

    Args:
        app: FastAPI application instance
    """
    # Payments & provider callbacks
    from waterpoint.api.payments import router as payments_router

    app.include_router(payments_router, prefix="/api")

    # Customer & station OTP
    from waterpoint.api.otp import router as otp_router
    from waterpoint.api.stations import router as stations_router

    app.include_router(otp_router, prefix="/api")
    app.include_router(stations_router, prefix="/api")
