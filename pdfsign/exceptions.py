"""
Custom exceptions and error handlers.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from pdfsign.pdf.errors import SigningError
from pdfsign.utils.logging import get_request_id

logger = logging.getLogger(__name__)


def _get_cors_origin(request: Request) -> Optional[str]:
    """Get CORS origin from request if it's an allowed origin."""
    from pdfsign.config import get_cors_origins

    origin = request.headers.get("origin")
    if origin and origin in get_cors_origins():
        return origin
    return None


def _add_cors_headers(response: JSONResponse, request: Request) -> JSONResponse:
    """Add CORS headers to error response."""
    origin = _get_cors_origin(request)
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


class ValidationException(AppException):
    """Validation error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            status_code=400,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class PayloadTooLargeException(AppException):
    """Uploaded document exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            status_code=413,
            code="DOCUMENT_TOO_LARGE",
            message=f"Document exceeds the {limit} byte limit ({size} bytes received)",
            details={"size_bytes": size, "limit_bytes": limit},
        )


# Domain error code -> HTTP status
SIGNING_ERROR_STATUS = {
    "SESSION_NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "SIGNING_IN_PROGRESS": 409,
    "EMPTY_STROKE": 422,
    "EMPTY_TEXT": 422,
    "DOCUMENT_LOAD_ERROR": 422,
    "PAGE_INDEX_OUT_OF_RANGE": 422,
    "IMAGE_EMBED_ERROR": 422,
}


class SigningException(AppException):
    """Signing operation error."""

    def __init__(
        self,
        message: str,
        code: str = "SIGNING_ERROR",
        status_code: int = 422,
        details: Optional[dict] = None,
    ):
        super().__init__(
            status_code=status_code,
            code=code,
            message=message,
            details=details,
        )

    @classmethod
    def from_error(cls, error: SigningError) -> "SigningException":
        """Wrap a domain error with the HTTP status for its code."""
        status_code = SIGNING_ERROR_STATUS.get(error.code, 500)
        details = {"recoverable": True} if error.is_recoverable else None
        return cls(error.message, code=error.code, status_code=status_code, details=details)


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Build standardized error response."""
    response = {
        "error": True,
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        response["details"] = details
    return response


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handle application exceptions."""
    logger.warning(f"AppException: {exc.code} - {exc.message}")
    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            exc.status_code,
            exc.code,
            exc.message,
            exc.details,
        ),
    )
    return _add_cors_headers(response, request)


async def signing_error_handler(
    request: Request,
    exc: SigningError,
) -> JSONResponse:
    """Handle domain errors that escaped a route without being wrapped."""
    return await app_exception_handler(request, SigningException.from_error(exc))


async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}")

    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "HTTP_ERROR")
        message = exc.detail.get("message", str(exc.detail))
    else:
        code = "HTTP_ERROR"
        message = str(exc.detail)

    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(exc.status_code, code, message),
    )
    return _add_cors_headers(response, request)


async def validation_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle request and Pydantic validation errors."""
    if isinstance(exc, (RequestValidationError, ValidationError)):
        raw_errors = exc.errors()
    else:
        raw_errors = []
    logger.warning(f"ValidationError: {raw_errors}")

    errors = []
    for error in raw_errors:
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    response = JSONResponse(
        status_code=422,
        content=build_error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": errors},
        ),
    )
    return _add_cors_headers(response, request)


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")

    response = JSONResponse(
        status_code=500,
        content=build_error_response(
            500,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        ),
    )
    return _add_cors_headers(response, request)
