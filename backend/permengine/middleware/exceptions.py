"""Exception hierarchy and handlers for consistent error responses.

Every engine error renders as:
{
    "error": {
        "code": "ERROR_CODE",
        "message": "...",
        ...details
    }
}

Denials carry the missing capability (policy shape, not data). Internal
identifiers and tracebacks never reach the client.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PermEngineError(Exception):
    """Base exception for permission engine errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)

    def details(self) -> dict[str, Any] | None:
        return None


class Unauthenticated(PermEngineError):
    """No usable identity reference for the operation."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="UNAUTHENTICATED",
        )


class PrincipalResolutionError(PermEngineError):
    """Identity did not resolve to a usable principal.

    Subclasses distinguish the cause for logging; clients only ever see
    UNAUTHENTICATED.
    """

    def __init__(self, message: str = "Principal could not be resolved"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="UNAUTHENTICATED",
        )


class PrincipalNotFound(PrincipalResolutionError):
    pass


class PrincipalInactive(PrincipalResolutionError):
    pass


class PrincipalRecordInvalid(PrincipalResolutionError):
    pass


class PrincipalStoreTimeout(PrincipalResolutionError):
    pass


class PrincipalStoreError(PrincipalResolutionError):
    pass


class PermissionDenied(PermEngineError):
    """Principal is known but lacks the required capability."""

    def __init__(
        self,
        message: str = "Permission denied",
        required_capability: str | None = None,
    ):
        self.required_capability = required_capability
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="INSUFFICIENT_PERMISSIONS",
        )

    def details(self) -> dict[str, Any] | None:
        if self.required_capability:
            return {"requiredCapability": self.required_capability}
        return None


class ConfigurationError(PermEngineError):
    """Rule or check references something outside the compiled catalog.

    Raised at registration / startup time; never converted to a decision.
    """

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="CONFIGURATION_ERROR",
        )


class EntityNotFound(PermEngineError):
    def __init__(self, entity_type: str, identifier: str):
        super().__init__(
            message=f"{entity_type} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class AuditWriteFailure(PermEngineError):
    """Audit sink could not record an event. Logged, never propagated."""

    def __init__(self, message: str = "Audit write failed"):
        super().__init__(message=message, error_code="AUDIT_WRITE_FAILURE")


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create standardized error response."""
    content: dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"].update(details)

    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def permengine_exception_handler(
    request: Request,
    exc: PermEngineError,
) -> JSONResponse:
    """Handle engine exceptions raised inside route handlers."""
    if isinstance(exc, ConfigurationError):
        logger.error(
            f"Configuration error: {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
        return create_error_response(
            status_code=exc.status_code,
            message="Permission configuration error",
            error_code=exc.error_code,
        )

    logger.info(
        f"Engine exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    headers = None
    message = exc.message
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        # Never reveal whether the principal is missing, inactive or broken
        message = "Authentication required"
        headers = {"WWW-Authenticate": "Bearer"}

    return create_error_response(
        status_code=exc.status_code,
        message=message,
        error_code=exc.error_code,
        details=exc.details(),
        headers=headers,
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException | StarletteHTTPException,
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={"path": request.url.path, "method": request.method},
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError | ValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={"path": request.url.path, "method": request.method},
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"details": {"errors": errors}},
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(PermEngineError, permengine_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
