"""
Statistics and maintenance endpoints.

- GET /api/stats: aggregate statistics over stored records
- DELETE /api/cleanup: retention sweep
"""

import structlog
from fastapi import APIRouter, Depends, Query

from ..core.metrics import MetricsCache
from ..core.retention import RetentionService
from ..core.store import RecordStore
from ..models.record import CleanupResponse, ErrorResponse, MachineCount, Statistics, StatsResponse
from .deps import get_metrics_cache, get_record_store, get_retention_service

logger = structlog.get_logger(__name__)

router = APIRouter()

TOP_MACHINES = 10


@router.get(
    "/stats",
    response_model=StatsResponse,
    responses={500: {"model": ErrorResponse, "description": "Storage failure"}},
    summary="Aggregate statistics",
    description="""
    Totals over all stored records.

    Records without a machine id count toward totalMessages but not toward
    uniqueMachines or topMachines. lastMessage comes from the in-memory
    metrics cache.
    """,
)
async def get_statistics(
    store: RecordStore = Depends(get_record_store),
    cache: MetricsCache = Depends(get_metrics_cache),
) -> StatsResponse:
    stats = await store.compute_stats()

    return StatsResponse(
        statistics=Statistics(
            total_messages=stats.total,
            unique_machines=stats.unique_machines,
            device_types=stats.device_types,
            recent_activity_24h=stats.recent_24h,
            last_message=cache.last_message,
            top_machines=[
                MachineCount(machine_id=machine_id, message_count=count)
                for machine_id, count in stats.top_machines(TOP_MACHINES)
            ],
        )
    )


@router.delete(
    "/cleanup",
    response_model=CleanupResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid days parameter"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
    summary="Delete old records",
    description="""
    Irreversibly delete records received more than `days` days ago.

    The in-memory metrics cache is not decremented.
    """,
)
async def cleanup_old_records(
    days: int = Query(30, ge=0, description="Age threshold in days"),
    retention: RetentionService = Depends(get_retention_service),
) -> CleanupResponse:
    logger.info("Cleanup requested", days=days)

    deleted = await retention.sweep(days)

    return CleanupResponse(
        message=f"Cleaned up records older than {days} days",
        deleted_records=deleted,
    )
