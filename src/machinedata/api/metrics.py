"""
Prometheus metrics endpoint.

Exposes metrics in Prometheus text format for scraping.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..core.metrics import MetricsCollector
from .deps import get_metrics_collector

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - records_ingested_total{device_type} - Records stored
    - requests_rejected_total{reason} - Requests refused before storage
    - records_deleted_total - Records removed by retention sweeps
    - storage_errors_total - Failed storage operations
    - uptime_seconds - Service uptime
    """,
)
async def get_metrics(
    metrics_collector: Optional[MetricsCollector] = Depends(get_metrics_collector),
) -> Response:
    """
    Returns metrics in Prometheus text format for scraping.
    """
    if not metrics_collector:
        logger.warning("Metrics collector not initialized")
        return Response(
            content="# Metrics collector not initialized\n",
            media_type=CONTENT_TYPE_LATEST,
        )

    metrics_collector.update_system_metrics()
    metrics_data = generate_latest(metrics_collector.registry)

    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

    return Response(
        content=metrics_data,
        media_type=CONTENT_TYPE_LATEST,
    )
