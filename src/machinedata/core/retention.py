"""
Retention sweeps.

Deletes records older than an age threshold, on demand or from an optional
periodic background task.
"""

import asyncio
from typing import Optional

import structlog

from ..config import RetentionSettings
from .exceptions import StorageError
from .metrics import MetricsCollector
from .store import RecordStore

logger = structlog.get_logger(__name__)


class RetentionService:
    """
    Background service that periodically removes expired records.

    The sweep runs as its own asyncio task and does not take the ingestion
    write lock. The metrics cache is left untouched by deletions.
    """

    def __init__(
        self,
        store: RecordStore,
        settings: RetentionSettings,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.store = store
        self.retention_days = settings.days
        self.sweep_interval = settings.sweep_interval_seconds
        self.metrics = metrics
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False

        logger.info(
            "Retention Service initialized",
            retention_days=self.retention_days,
            interval_seconds=self.sweep_interval,
        )

    async def sweep(self, retention_days: Optional[int] = None) -> int:
        """Delete records older than retention_days; returns the count removed."""
        days = self.retention_days if retention_days is None else retention_days
        deleted = await self.store.delete_older_than(days)
        if self.metrics:
            self.metrics.record_deletion(deleted)
        return deleted

    async def start(self) -> None:
        """Start the periodic sweep, if an interval is configured."""
        if self._running or self.sweep_interval <= 0:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_sweep_loop())

        logger.info("Retention Service started")

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info("Retention Service stopped")

    async def _run_sweep_loop(self) -> None:
        """Main sweep loop."""
        while self._running:
            try:
                # Wait first so startup is not slowed by a sweep
                await asyncio.sleep(self.sweep_interval)

                deleted = await self.sweep()
                if deleted > 0:
                    logger.info("Retention sweep completed", deleted_records=deleted)

            except asyncio.CancelledError:
                break
            except StorageError as e:
                logger.error("Retention sweep failed", error=str(e))

    def is_running(self) -> bool:
        return self._running
