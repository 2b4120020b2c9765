"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    BillingError,
    ChainIntegrityError,
    InvalidTransitionError,
    NotEditableError,
    OverConversionError,
    RecordNotFoundError,
    ValidationRangeError,
)

logger = logging.getLogger(__name__)

# Most specific first; OverpaymentError is caught by its ValidationRangeError base
STATUS_BY_ERROR: list[tuple[type[BillingError], int]] = [
    (RecordNotFoundError, 404),
    (InvalidTransitionError, 409),
    (NotEditableError, 409),
    (OverConversionError, 409),
    (ValidationRangeError, 422),
    (ChainIntegrityError, 500),
]


def status_for(exc: BillingError) -> int:
    """HTTP status for a billing error."""
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 400


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{exc.code}: {exc}")
        return JSONResponse(
            status_code=status,
            content=error_response(exc.code, str(exc), _request_id(request)).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.INVALID_REQUEST, str(exc), _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors(include_url=False)),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                _request_id(request),
            ).model_dump(mode="json"),
        )
