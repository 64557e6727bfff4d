"""Main FastAPI application module."""

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.asyncio import Redis
from starlette import status

from truthchain.api.v1.router import router as v1_router
from truthchain.core.config import Settings
from truthchain.core.events import AppState, create_lifespan
from truthchain.core.logging import configure_logging
from truthchain.middleware.correlation import CorrelationMiddleware
from truthchain.middleware.errors import ErrorHandlingMiddleware, ErrorRenderer
from truthchain.middleware.metrics import MetricsMiddleware
from truthchain.middleware.rate_limit import RateLimitMiddleware
from truthchain.middleware.security import SecurityHeadersMiddleware


def _redis_from_state(request: Request) -> Redis | None:
    resources = getattr(request.app.state, "resources", None)
    return resources.redis if resources is not None else None


def create_app(settings: Settings | None = None, state: AppState | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration, loaded from the environment when omitted
        state: Pre-built resources; when given, startup creates nothing
    """
    settings = settings or (state.settings if state else Settings())

    app = FastAPI(
        title=settings.app_name,
        description="Content notarization on the Stacks blockchain",
        version=settings.version,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        default_response_class=JSONResponse,
        lifespan=create_lifespan(state),
    )
    app.state.settings = settings
    if state is not None:
        app.state.resources = state

    ErrorRenderer().install(app)

    # Add middleware in order (inside -> out):
    # 1. CORS (outermost)
    # 2. Security headers
    # 3. Correlation (adds request ID)
    # 4. Metrics (tracks all requests)
    # 5. Error handling
    # 6. Rate limiting (innermost, sees the final status code)
    app.add_middleware(RateLimitMiddleware, settings=settings, redis_provider=_redis_from_state)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*", "Content-Type", "X-Request-ID", "X-Wallet-Address"],
        expose_headers=["X-Request-ID", "Retry-After", "RateLimit-Remaining"],
        max_age=600,
    )

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", include_in_schema=False)
    async def root_redirect() -> Response:
        """Redirect root path to docs."""
        return RedirectResponse(
            url=f"{settings.api_prefix}/docs",
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
        )

    app.include_router(v1_router, prefix=settings.api_prefix)
    return app


def app_factory() -> FastAPI:
    """Entry point for ``uvicorn --factory truthchain.main:app_factory``."""
    settings = Settings()
    configure_logging(level=settings.LOG_LEVEL, json_logs=settings.JSON_LOGS)
    return create_app(settings)
