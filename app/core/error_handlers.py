"""
HTTP rendering of service errors.

Every failure leaves the service as
``{timestamp, path, error_code, message, details}``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.database import utcnow
from app.core.exceptions import ErrorCode, ServiceError, DEFAULT_MESSAGES, GENERIC_ERROR_MESSAGE

logger = logging.getLogger(__name__)


def error_body(
    request: Request,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    return {
        "timestamp": utcnow().isoformat(),
        "path": request.url.path,
        "error_code": error_code,
        "message": message,
        "details": details,
    }


def validation_details(exc: RequestValidationError) -> Dict[str, str]:
    """Map each invalid field to its first reason"""
    details: Dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "request"
        details.setdefault(field, error.get("msg", "Invalid value"))
    return details


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.masked:
        logger.error(f"{exc.code.value} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.wire_code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content=error_body(request, exc.wire_code, exc.public_message(), exc.public_details())
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = validation_details(exc)
    logger.info(f"Validation failed on {request.url.path}: {sorted(details)}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            request,
            ErrorCode.VALIDATION_ERROR.value,
            DEFAULT_MESSAGES[ErrorCode.VALIDATION_ERROR],
            details
        )
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(request, ErrorCode.INTERNAL_ERROR.value, GENERIC_ERROR_MESSAGE)
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
