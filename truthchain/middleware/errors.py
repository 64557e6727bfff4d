"""Error handling middleware."""

from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)
from starlette.types import ASGIApp

from truthchain.core.hashing import InvalidHashError
from truthchain.core.logging import get_logger, get_request_logger
from truthchain.services.bns import RegistryUnavailableError
from truthchain.services.ipfs import IPFSError
from truthchain.services.registration import (
    ContentTooLongError,
    RegistrationConflictError,
    RegistrationFailedError,
    RegistrationNotFoundError,
)
from truthchain.services.resolver import MissingInputError

logger = get_logger()

# Map exception types to (status code, error title)
ErrorMapping = dict[type[Exception], tuple[int, str]]

ERROR_MAPPING: ErrorMapping = {
    InvalidHashError: (HTTP_400_BAD_REQUEST, "Invalid hash"),
    MissingInputError: (HTTP_400_BAD_REQUEST, "Missing required fields"),
    ContentTooLongError: (HTTP_400_BAD_REQUEST, "Content too long"),
    RegistrationConflictError: (HTTP_409_CONFLICT, "Content already registered"),
    RegistrationNotFoundError: (HTTP_404_NOT_FOUND, "Not found"),
    RegistrationFailedError: (HTTP_502_BAD_GATEWAY, "Registration failed"),
    RegistryUnavailableError: (HTTP_503_SERVICE_UNAVAILABLE, "BNS registry unavailable"),
    IPFSError: (HTTP_502_BAD_GATEWAY, "IPFS unavailable"),
}


def _correlation_id(request: Request) -> str | None:
    correlation_id = getattr(request.state, "correlation_id", None)
    return str(correlation_id) if correlation_id else None


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    **extra: Any,
) -> JSONResponse:
    """Build the standard failure envelope."""
    correlation_id = _correlation_id(request)
    response = JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "message": message,
            "correlation_id": correlation_id or "unknown",
            **extra,
        },
    )
    if correlation_id:
        response.headers["X-Request-ID"] = correlation_id
    return response


def _validation_message(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        msg = str(error.get("msg"))
        messages.append(f"{location}: {msg}" if location else msg)
    return "; ".join(messages) or "Invalid request"


class ErrorRenderer:
    """Renders exceptions as JSON error responses."""

    def __init__(self, error_mapping: ErrorMapping | None = None) -> None:
        self.error_mapping = error_mapping or ERROR_MAPPING

    def install(self, app: FastAPI) -> None:
        """Register exception handlers on the application."""
        app.exception_handlers[StarletteHTTPException] = self.handle_http_exception
        app.exception_handlers[RequestValidationError] = self.handle_validation_error
        for exc_type in self.error_mapping:
            app.exception_handlers[exc_type] = self.handle_exception

    async def handle_http_exception(
        self, request: Request, exc: Exception
    ) -> JSONResponse:
        if not isinstance(exc, StarletteHTTPException):
            return await self.handle_exception(request, exc)
        if isinstance(exc.detail, dict):
            detail = dict(exc.detail)
            error = str(detail.pop("error", "Request failed"))
            message = str(detail.pop("message", error))
            return error_response(request, exc.status_code, error, message, **detail)
        message = str(exc.detail)
        return error_response(request, exc.status_code, message, message)

    async def handle_validation_error(
        self, request: Request, exc: Exception
    ) -> JSONResponse:
        if not isinstance(exc, RequestValidationError):
            return await self.handle_exception(request, exc)
        message = _validation_message(exc)
        logger.info("request_validation_failed", path=request.url.path, detail=message)
        return error_response(request, HTTP_400_BAD_REQUEST, "Validation failed", message)

    def _lookup(self, exc: Exception) -> tuple[int, str] | None:
        for exc_type, mapped in self.error_mapping.items():
            if isinstance(exc, exc_type):
                return mapped
        return None

    async def handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Map a domain exception, or report an internal error."""
        mapped = self._lookup(exc)
        if mapped is not None:
            status_code, error = mapped
            detail = str(exc.args[0]) if exc.args else error
            logger.warning(
                "request_error",
                error_type=exc.__class__.__name__,
                error_message=detail,
                status_code=status_code,
                path=request.url.path,
                method=request.method,
            )
            return error_response(request, status_code, error, detail)

        # Unknown failures never echo exception text, it may carry secrets
        get_request_logger(_correlation_id(request)).exception(
            "unhandled_error",
            error_type=exc.__class__.__name__,
            path=request.url.path,
            method=request.method,
        )
        return error_response(
            request,
            HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal server error",
            "An unexpected error occurred",
        )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catches exceptions that escape the exception handlers.

    Responses produced by routes are passed through untouched.
    """

    def __init__(self, app: ASGIApp, error_mapping: ErrorMapping | None = None) -> None:
        super().__init__(app)
        self.renderer = ErrorRenderer(error_mapping)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except HTTPException as exc:
            return await self.renderer.handle_http_exception(request, exc)
        except Exception as exc:
            return await self.renderer.handle_exception(request, exc)
