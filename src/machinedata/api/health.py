"""
Health check endpoint.

- /health: liveness plus database status and the metrics cache snapshot
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/health",
    status_code=200,
    summary="Service health",
    description="""
    Always returns 200 while the process is serving requests.

    `status` is "operational" when the database answers and "degraded"
    otherwise. `metrics` reports the in-memory counters.
    """,
)
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Liveness with database status and the metrics snapshot.
    """
    health_checker = getattr(request.app.state, "health_checker", None)
    cache = getattr(request.app.state, "metrics_cache", None)
    collector = getattr(request.app.state, "metrics", None)

    database = "error"
    checks: Dict[str, Any] = {}
    if health_checker is None:
        logger.warning("Health checker not initialized")
    else:
        health_status = await health_checker.check_all()
        database = health_status.checks["database"].message
        checks = {
            name: {"status": check.status, "message": check.message}
            for name, check in health_status.checks.items()
        }

    metrics: Dict[str, Any] = {"totalMessages": 0, "connectedDevices": 0, "lastActivity": None}
    if cache is not None:
        snapshot = cache.snapshot()
        metrics = {
            "totalMessages": snapshot.total_messages,
            "connectedDevices": snapshot.connected_devices,
            "lastActivity": snapshot.last_message.isoformat() if snapshot.last_message else None,
        }

    return {
        "status": "operational" if database == "connected" else "degraded",
        "database": database,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": collector.uptime() if collector else None,
        "checks": checks,
        "metrics": metrics,
    }
