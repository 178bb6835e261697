"""Exception handlers: one JSON error envelope for every failure the API reports."""

import logging
from http import HTTPStatus
from typing import Any, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .correlation import get_correlation_id


logger = logging.getLogger(__name__)


def error_body(request: Request, error: str, message: str, details: Optional[Any] = None) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details,
        "correlation_id": get_correlation_id(request),
    }


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Report request validation errors field by field.

    Args:
        request: FastAPI request
        exc: Validation error

    Returns:
        422 response whose details list every invalid field
    """
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    logger.warning(f"Validation error on {request.method} {request.url.path}: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(request, "Validation Error", "The request data failed validation", errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap HTTPException (e.g. unknown workflow id) in the error envelope."""
    try:
        phrase = HTTPStatus(exc.status_code).phrase
    except ValueError:
        phrase = "Error"

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, phrase, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle anything the routes did not.

    The exception text is only returned when the app runs with DEBUG on.
    """
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)

    debug = request.app.state.settings.DEBUG
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            request,
            "Internal Server Error",
            "An unexpected error occurred",
            str(exc) if debug else None,
        ),
    )
