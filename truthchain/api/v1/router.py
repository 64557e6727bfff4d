"""API v1 router module."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from truthchain.api.v1.bns import router as bns_router
from truthchain.api.v1.dependencies import get_resources
from truthchain.api.v1.registration import router as registration_router
from truthchain.api.v1.verification import router as verification_router
from truthchain.core.events import AppState

router = APIRouter(default_response_class=JSONResponse)

router.include_router(verification_router)
router.include_router(registration_router)
router.include_router(bns_router)


def _component_response(
    request: Request, name: str, healthy: bool, **details: Any
) -> JSONResponse:
    content = {
        "status": "healthy" if healthy else "unhealthy",
        "component": name,
        "correlation_id": request.state.correlation_id,
        **details,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=content)


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns
    -------
        Dict containing health status information
    """
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "version": settings.version,
        "network": settings.NETWORK,
        "correlation_id": request.state.correlation_id,
    }


@router.get("/health/redis")
async def redis_health_check(
    request: Request, resources: AppState = Depends(get_resources)
) -> JSONResponse:
    return _component_response(request, "redis", await resources.redis_health())


@router.get("/health/db")
async def db_health_check(
    request: Request, resources: AppState = Depends(get_resources)
) -> JSONResponse:
    return _component_response(request, "database", await resources.database_health())


@router.get("/health/chain")
async def chain_health_check(
    request: Request, resources: AppState = Depends(get_resources)
) -> JSONResponse:
    healthy = await resources.chain_health()
    details = resources.gateway.describe() if resources.gateway else {}
    return _component_response(request, "chain", healthy, **details)
