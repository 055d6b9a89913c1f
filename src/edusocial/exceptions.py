"""
Domain errors and exception handlers with request ID support
Standardized error response format: { code, message, category, details?, request_id }
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any

from .logging_config import get_request_id

logger = logging.getLogger(__name__)

# Client-facing categories so API consumers can branch on the kind of failure
CATEGORY_INVALID_REQUEST = "invalid_request"
CATEGORY_RETRY_LATER = "retry_later"
CATEGORY_NOT_POSSIBLE = "not_possible"


class EduSocialError(Exception):
    """Base class for errors raised by the billing, moderation and engagement services"""

    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    category = CATEGORY_INVALID_REQUEST
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(EduSocialError):
    """Malformed or out-of-range input"""
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Unauthorized(EduSocialError):
    """Missing or invalid caller identity or signature"""
    code = "AUTH_ERROR"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(EduSocialError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(EduSocialError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidState(EduSocialError):
    """Operation not legal in the entity's current lifecycle state"""
    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT
    category = CATEGORY_NOT_POSSIBLE


class InvalidTransition(InvalidState):
    code = "INVALID_TRANSITION"


class InsufficientCredits(EduSocialError):
    code = "INSUFFICIENT_CREDITS"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    category = CATEGORY_NOT_POSSIBLE


class InfrastructureError(EduSocialError):
    """Downstream dependency failure (database, payment gateway, moderation service, cache)"""
    code = "SERVICE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    category = CATEGORY_RETRY_LATER
    retryable = True


class ErrorResponse:
    """
    Standard error response format

    Schema: { code, message, status_code, category, details?, request_id }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        category: Optional[str] = None,
    ) -> dict:
        """
        Create standardized error response

        Args:
            message: Human-readable error message
            code: Error code (e.g., "VALIDATION_ERROR", "INSUFFICIENT_CREDITS")
            status_code: HTTP status code
            request_id: Request ID from context (auto-fetched if None)
            details: Optional additional error details
            category: invalid_request, retry_later or not_possible (derived from status if None)

        Returns:
            Dictionary with error details
        """
        if request_id is None:
            request_id = get_request_id()

        if category is None:
            category = category_for_status(status_code)

        response = {
            "code": code,
            "message": message,
            "status_code": status_code,
            "category": category,
        }

        if request_id:
            response["request_id"] = request_id

        if details:
            response["details"] = details

        return response


def category_for_status(status_code: int) -> str:
    """Map an HTTP status to the client-facing failure category"""
    if status_code >= 500:
        return CATEGORY_RETRY_LATER
    if status_code in (status.HTTP_402_PAYMENT_REQUIRED, status.HTTP_409_CONFLICT):
        return CATEGORY_NOT_POSSIBLE
    return CATEGORY_INVALID_REQUEST


async def edusocial_exception_handler(request: Request, exc: EduSocialError) -> JSONResponse:
    """Render domain errors with their stable code and status"""
    request_id = get_request_id()

    details = dict(exc.details) if exc.details else {}
    if exc.retryable:
        details["retryable"] = True

    error_response = ErrorResponse.create(
        message=exc.message,
        code=exc.code,
        status_code=exc.status_code,
        request_id=request_id,
        details=details or None,
        category=exc.category,
    )

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.code}: {exc.message}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(status_code=exc.status_code, content=error_response)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with request ID"""
    request_id = get_request_id()

    error_code_map = {
        400: "BAD_REQUEST",
        401: "AUTH_ERROR",
        402: "INSUFFICIENT_CREDITS",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE"
    }
    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")

    detail = exc.detail
    error_message = str(detail) if detail else f"HTTP {exc.status_code} error"
    error_details = None

    if isinstance(detail, dict):
        error_message = detail.get("message", str(detail))
        error_code = detail.get("code", error_code)
        error_details = {k: v for k, v in detail.items() if k not in ["message", "code"]} or None

    error_response = ErrorResponse.create(
        message=error_message,
        code=error_code,
        status_code=exc.status_code,
        request_id=request_id,
        details=error_details,
    )

    logger.warning(
        f"HTTP {exc.status_code}: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body validation exceptions with request ID"""
    request_id = get_request_id()

    errors = exc.errors()
    error_messages = [f"{err['loc']}: {err['msg']}" for err in errors]
    detail = "; ".join(error_messages)

    error_response = ErrorResponse.create(
        message=f"Validation error: {detail}",
        code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        request_id=request_id,
        details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in errors]},
    )

    logger.warning(
        f"Validation error: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with request ID"""
    request_id = get_request_id()

    # Don't expose internal error details outside dev
    from .config import config
    error_message = "Internal server error"
    error_details = None

    if config.ENV == "dev":
        error_message = f"Internal server error: {str(exc)}"
        error_details = {"exception_type": type(exc).__name__}

    error_response = ErrorResponse.create(
        message=error_message,
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
        details=error_details,
    )

    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response
    )


def register_exception_handlers(app) -> None:
    """Attach the standard handlers to a FastAPI application"""
    app.add_exception_handler(EduSocialError, edusocial_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
