"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /api/machine-data - Ingestion and retrieval
- /api/stats, /api/cleanup - Statistics and retention
- /health - Health check
- /metrics - Prometheus metrics

Every /api route is behind the global rate limit.
"""
from fastapi import APIRouter, Depends

from ..core.admission import enforce_global_rate_limit
from .health import router as health_router
from .machine_data import router as machine_data_router
from .metrics import router as metrics_router
from .stats import router as stats_router

api_router = APIRouter(prefix="/api", dependencies=[Depends(enforce_global_rate_limit)])
api_router.include_router(machine_data_router, tags=["machine-data"])
api_router.include_router(stats_router, tags=["stats"])

__all__ = ["api_router", "health_router", "metrics_router"]
