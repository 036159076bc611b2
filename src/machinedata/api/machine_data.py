"""
Machine data API endpoints.

- POST /api/machine-data: ingest one payload
- GET /api/machine-data: filtered, paginated listing
- GET /api/machine-data/{machine_id}: most recent records for one machine
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Path, Query, Request
from fastapi.responses import JSONResponse

from ..config import Settings
from ..core.admission import AdmissionGate, client_address
from ..core.exceptions import ValidationError
from ..core.extraction import admission_key, parse_timestamp
from ..core.pipeline import IngestionPipeline, try_parse_body
from ..core.store import RecordFilter, RecordStore
from ..models.record import (
    ErrorResponse,
    ExtractedFields,
    IngestResponse,
    MachineRecordsResponse,
    Pagination,
    RecordListResponse,
)
from .deps import get_admission_gate, get_app_settings, get_pipeline, get_record_store

logger = structlog.get_logger(__name__)

router = APIRouter()


def _parse_bound(name: str, value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid '{name}' timestamp. Use ISO 8601 format.",
            details={"parameter": name, "value": value},
        )
    return parsed


@router.post(
    "/machine-data",
    response_model=IngestResponse,
    status_code=201,
    responses={
        400: {"model": ErrorResponse, "description": "Empty, malformed or rejected payload"},
        413: {"model": ErrorResponse, "description": "Payload too large"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
    summary="Ingest machine data",
    description="""
    Store one JSON object posted by a machine.

    **Processing:**
    1. Global and per-machine rate limiting
    2. Payload validation (non-empty JSON object; strict mode adds required fields)
    3. Field extraction (machine id, device type, event timestamp)
    4. Persistence and metrics update

    **Rate Limits:**
    - 1 request per 10 seconds per machine (machine id, else client address)
    - 100 requests per minute across all callers
    """,
)
async def ingest_machine_data(
    request: Request,
    pipeline: IngestionPipeline = Depends(get_pipeline),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> JSONResponse:
    """
    Ingest one machine payload.
    """
    request_id = str(uuid.uuid4())
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit():
        pipeline.check_size(int(content_length))

    raw_body = await request.body()
    pipeline.check_size(len(raw_body))

    payload = try_parse_body(raw_body)
    client_host = client_address(request)

    await gate.check_machine(admission_key(payload, raw_body), client_host)

    result = await pipeline.ingest(
        payload,
        raw_body,
        request_metadata={
            "ip": client_host,
            "userAgent": request.headers.get("user-agent"),
            "contentLength": len(raw_body),
        },
        request_id=request_id,
    )

    response = IngestResponse(
        message="Data received and stored",
        id=result.record.id,
        timestamp=result.record.received_at,
        extracted=ExtractedFields(
            machine_id=result.extraction.machine_id,
            device_type=result.extraction.device_type,
            event_timestamp=result.extraction.event_timestamp,
        ),
    )
    return JSONResponse(
        status_code=201,
        content=response.model_dump(mode="json", by_alias=True),
        headers={"X-Request-ID": request_id},
    )


@router.get(
    "/machine-data",
    response_model=RecordListResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid query parameters"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
    summary="List machine data",
)
async def list_machine_data(
    machine_id: Optional[str] = Query(None, alias="machineId"),
    device_type: Optional[str] = Query(None, alias="deviceType"),
    received_from: Optional[str] = Query(None, alias="from", description="Inclusive lower bound on receive time"),
    received_to: Optional[str] = Query(None, alias="to", description="Inclusive upper bound on receive time"),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    store: RecordStore = Depends(get_record_store),
    settings: Settings = Depends(get_app_settings),
) -> RecordListResponse:
    """
    Records matching all given filters, most recently received first.
    """
    limit = min(limit or settings.query.default_limit, settings.query.max_limit)
    filters = RecordFilter(
        machine_id=machine_id,
        device_type=device_type,
        received_from=_parse_bound("from", received_from),
        received_to=_parse_bound("to", received_to),
    )

    page = await store.query(filters, limit=limit, offset=offset)

    logger.debug(
        "Machine data listed",
        machine_id=machine_id,
        device_type=device_type,
        total=page.total,
        returned=len(page.records),
    )

    return RecordListResponse(
        data=page.records,
        pagination=Pagination(
            total=page.total,
            limit=limit,
            offset=offset,
            has_more=page.has_more,
        ),
    )


@router.get(
    "/machine-data/{machine_id}",
    response_model=MachineRecordsResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No records for this machine"},
        500: {"model": ErrorResponse, "description": "Storage failure"},
    },
    summary="Records for one machine",
)
async def get_machine_data(
    machine_id: str = Path(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1),
    store: RecordStore = Depends(get_record_store),
    settings: Settings = Depends(get_app_settings),
) -> MachineRecordsResponse:
    limit = min(limit or settings.query.machine_default_limit, settings.query.max_limit)
    records = await store.query_by_machine(machine_id, limit=limit)

    return MachineRecordsResponse(
        machine_id=machine_id,
        record_count=len(records),
        data=records,
    )
