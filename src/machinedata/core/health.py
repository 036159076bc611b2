"""
Health checker for the service's dependencies.

Checks the record store and the retention background service.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .retention import RetentionService
from .store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """
    Dependency health checks.

    The service stays up when a check fails; /health then reports
    "degraded" instead of "operational".
    """

    def __init__(self, store: RecordStore, retention_service: Optional[RetentionService] = None) -> None:
        self.store = store
        self.retention_service = retention_service
        logger.info("Health Checker initialized")

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        checks = {
            "database": await self._check_database(),
            "retention": self._check_retention(),
        }
        failed_checks = [name for name, check in checks.items() if check.status != "healthy"]

        return HealthStatus(
            is_healthy=not failed_checks,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time(),
        )

    async def _check_database(self) -> HealthCheck:
        ok = await self.store.ping()
        if not ok:
            logger.warning("Database health check failed", path=str(self.store.settings.path))
        return HealthCheck(
            name="database",
            status="healthy" if ok else "unhealthy",
            message="connected" if ok else "error",
            details={"path": str(self.store.settings.path)},
            last_check=time.time(),
        )

    def _check_retention(self) -> HealthCheck:
        if self.retention_service is None or self.retention_service.sweep_interval <= 0:
            return HealthCheck(
                name="retention",
                status="healthy",
                message="Periodic sweep disabled",
                details={},
                last_check=time.time(),
            )

        running = self.retention_service.is_running()
        return HealthCheck(
            name="retention",
            status="healthy" if running else "unhealthy",
            message="Periodic sweep running" if running else "Periodic sweep stopped",
            details={"interval_seconds": self.retention_service.sweep_interval},
            last_check=time.time(),
        )
