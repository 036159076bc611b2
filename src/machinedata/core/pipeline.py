"""
Ingestion pipeline.

Orchestrates one submission:
1. Body size and JSON decoding
2. Policy check (flexible extraction or strict legacy validation)
3. Field extraction
4. Store insert and metrics cache update under a single write lock

Rate limiting happens before the pipeline is entered (see admission.py).
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from ..config import Settings
from ..models.record import Record
from .exceptions import PayloadTooLargeError, ValidationError
from .extraction import ExtractionResult, extract, validate_strict
from .metrics import MetricsCache, MetricsCollector
from .store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class IngestionResult:
    """Result of storing one payload."""
    record: Record
    extraction: ExtractionResult
    processing_time_ms: float


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def try_parse_body(raw_body: bytes) -> Optional[Any]:
    """Decode a JSON body, returning None when it is not valid JSON (NaN and Infinity included)."""
    if not raw_body.strip():
        return None
    try:
        return json.loads(raw_body, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError):
        return None


class IngestionPipeline:
    """
    Main processing pipeline for machine data ingestion.

    Insert and metrics update are serialized so the cache never misses or
    double counts a record.
    """

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        cache: MetricsCache,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.cache = cache
        self.metrics = metrics
        self._write_lock = asyncio.Lock()
        logger.info(
            "Ingestion pipeline initialized",
            mode=settings.ingestion.mode,
            has_metrics=metrics is not None,
        )

    @property
    def mode(self) -> str:
        return self.settings.ingestion.mode

    def check_size(self, size: int) -> None:
        """Reject bodies larger than the configured limit."""
        limit = self.settings.ingestion.max_payload_bytes
        if size > limit:
            logger.warning("Payload rejected: too large", size=size, limit=limit)
            raise PayloadTooLargeError(size=size, limit=limit)

    def validate_payload(self, payload: Any, raw_body: bytes) -> Dict[str, Any]:
        """Ensure the decoded body is a non-empty JSON object acceptable to the policy."""
        if not raw_body.strip():
            raise ValidationError("Request body is empty")
        if payload is None and raw_body.strip() != b"null":
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationError(
                "Request body must be a JSON object",
                details={"receivedType": type(payload).__name__},
            )
        if not payload:
            raise ValidationError("Payload is empty")

        if self.mode == "strict":
            validate_strict(payload)

        return payload

    async def ingest(
        self,
        payload: Any,
        raw_body: bytes,
        request_metadata: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> IngestionResult:
        """
        Validate, extract and store one payload.
        """
        start = time.perf_counter()
        payload = self.validate_payload(payload, raw_body)
        extraction = extract(payload)

        logger.debug(
            "Payload extracted",
            request_id=request_id,
            machine_id=extraction.machine_id,
            device_type=extraction.device_type,
            event_timestamp=extraction.event_timestamp,
        )

        async with self._write_lock:
            record = await self.store.insert(
                machine_id=extraction.machine_id,
                device_type=extraction.device_type,
                event_timestamp=extraction.event_timestamp,
                raw_payload=payload,
                extracted_data=extraction.extracted_data,
                metadata=request_metadata or {},
            )
            self.cache.record_insert(record.machine_id, record.received_at)

        if self.metrics:
            self.metrics.record_ingestion(record.device_type)

        processing_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Data saved",
            request_id=request_id,
            record_id=record.id,
            machine_id=record.machine_id,
            processing_time_ms=round(processing_time_ms, 2),
        )

        return IngestionResult(
            record=record,
            extraction=extraction,
            processing_time_ms=processing_time_ms,
        )
