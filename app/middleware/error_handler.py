"""Exception handlers rendering every failure as one JSON error shape."""

import traceback
from typing import Any

import structlog
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.core.exceptions import AppException

logger = structlog.get_logger()


def error_body(request: Request, error: str, message: Any, errors: list[Any] | None = None) -> dict[str, Any]:
    """``{"error", "message", "path"}`` plus ``errors`` when there are any."""
    content: dict[str, Any] = {
        "error": error,
        "message": message,
        "path": str(request.url),
    }
    if errors:
        content["errors"] = jsonable_encoder(errors)
    return content


def validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Flatten pydantic errors to ``{"field", "message"}`` entries."""
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle custom application exceptions.

    Args:
        request: Request object
        exc: Application exception

    Returns:
        JSON error response, with field-level ``errors`` when the exception has them
    """
    if exc.status_code >= 500:
        logger.error("application_error", path=request.url.path, error=exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.__class__.__name__, exc.message, exc.errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework HTTP errors (401s from the bearer scheme, 404 routes, ...)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, "HTTPException", exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle request validation errors.

    Args:
        request: Request object
        exc: Validation exception

    Returns:
        422 response listing each invalid field
    """
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(request, "ValidationError", "Request validation failed", validation_errors(exc)),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions.

    The stack trace is only included outside production.
    """
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)

    content = error_body(request, "InternalServerError", "An unexpected error occurred")
    if not settings.is_production:
        content["detail"] = "".join(traceback.format_exception(exc))

    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
