"""API v1 router - includes all v1 endpoints."""

from fastapi import APIRouter

from qselect.api.v1.endpoints import exposures, health, metrics, pool_health, selections

api_router = APIRouter()

api_router.include_router(health.router, prefix="", tags=["Health"])
api_router.include_router(metrics.router, prefix="", tags=["Observability"])
api_router.include_router(selections.router, prefix="/selections", tags=["Selections"])
api_router.include_router(pool_health.router, prefix="/pool-health", tags=["Pool Health"])
api_router.include_router(exposures.router, prefix="/exposures", tags=["Exposures"])
