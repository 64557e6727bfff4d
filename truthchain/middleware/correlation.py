"""Correlation ID middleware for request tracking."""

import re
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from structlog.contextvars import bind_contextvars, clear_contextvars

# Client-supplied ids: UUIDs or short opaque tokens
_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _validate_correlation_id(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return bool(_SAFE_ID.match(value))


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Middleware to handle request correlation IDs.

    Reuses a valid ``X-Request-ID`` header or generates a UUID, then exposes
    it on the request state, the response headers and the logging context.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        clear_contextvars()

        header_value = request.headers.get("X-Request-ID", "")
        if _validate_correlation_id(header_value):
            correlation_id = header_value
        else:
            correlation_id = str(uuid.uuid4())

        bind_contextvars(
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response
