"""
Service metrics.

MetricsCache holds the running counters reported by /health and /api/stats.
MetricsCollector exports Prometheus counters for scraping on /metrics.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Set

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Info

if TYPE_CHECKING:
    from .store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class MetricsSnapshot:
    total_messages: int
    connected_devices: int
    last_message: Optional[datetime]


class MetricsCache:
    """
    In-memory running counters, seeded from the store at startup.

    Deletions never decrement the cache, so after a cleanup the cache can
    report more messages and devices than the store holds.
    """

    def __init__(self) -> None:
        self.total_messages = 0
        self.connected_devices: Set[str] = set()
        self.last_message: Optional[datetime] = None

    async def initialize(self, store: "RecordStore") -> None:
        self.total_messages = await store.count()
        self.connected_devices = set(await store.distinct_machine_ids())
        logger.info(
            "Metrics cache initialized",
            total_messages=self.total_messages,
            connected_devices=len(self.connected_devices),
        )

    def record_insert(self, machine_id: Optional[str], received_at: datetime) -> None:
        self.total_messages += 1
        if machine_id is not None:
            self.connected_devices.add(machine_id)
        self.last_message = received_at

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            total_messages=self.total_messages,
            connected_devices=len(self.connected_devices),
            last_message=self.last_message,
        )


class MetricsCollector:
    """
    Prometheus metrics for the ingestion service.

    Each collector owns its registry so several app instances can coexist
    in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        # Service info
        self.service_info = Info(
            "machinedata_service",
            "Machine data service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": "0.1.0",
            "service": "machinedata",
        })

        self.records_ingested_total = Counter(
            "records_ingested_total",
            "Total number of records stored",
            ["device_type"],
            registry=self.registry,
        )

        self.requests_rejected_total = Counter(
            "requests_rejected_total",
            "Total number of requests rejected before storage",
            ["reason"],
            registry=self.registry,
        )

        self.records_deleted_total = Counter(
            "records_deleted_total",
            "Total records removed by retention sweeps",
            registry=self.registry,
        )

        self.storage_errors_total = Counter(
            "storage_errors_total",
            "Total failed storage operations surfaced to callers",
            registry=self.registry,
        )

        self.uptime_seconds = Gauge(
            "uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        # Track start time for uptime calculation
        self._start_time = time.time()

    def record_ingestion(self, device_type: str) -> None:
        self.records_ingested_total.labels(device_type=device_type).inc()

    def record_rejection(self, reason: str) -> None:
        self.requests_rejected_total.labels(reason=reason).inc()

    def record_deletion(self, count: int) -> None:
        if count > 0:
            self.records_deleted_total.inc(count)

    def record_storage_error(self) -> None:
        self.storage_errors_total.inc()

    def uptime(self) -> float:
        return time.time() - self._start_time

    def update_system_metrics(self) -> None:
        self.uptime_seconds.set(self.uptime())
