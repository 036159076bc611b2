"""
Unit tests for the ingestion pipeline.
"""

import asyncio
import json
from typing import Any, Dict

import pytest

from machinedata.config import IngestionSettings, Settings
from machinedata.core.exceptions import MissingFieldsError, PayloadTooLargeError, ValidationError
from machinedata.core.metrics import MetricsCache, MetricsCollector
from machinedata.core.pipeline import IngestionPipeline, try_parse_body


def _pipeline(store, mode: str = "flexible") -> IngestionPipeline:
    settings = Settings(ingestion=IngestionSettings(mode=mode, max_payload_bytes=128))
    return IngestionPipeline(settings, store, MetricsCache(), MetricsCollector())


def _body(payload: Any) -> bytes:
    return json.dumps(payload).encode()


class TestBodyParsing:

    def test_valid_json(self) -> None:
        assert try_parse_body(b'{"a": 1}') == {"a": 1}

    def test_invalid_json(self) -> None:
        assert try_parse_body(b"{not json") is None
        assert try_parse_body(b"\xff\xfe") is None

    def test_non_standard_constants(self) -> None:
        assert try_parse_body(b'{"reading": NaN}') is None
        assert try_parse_body(b'{"reading": -Infinity}') is None

    def test_blank_body(self) -> None:
        assert try_parse_body(b"   ") is None


class TestPayloadValidation:

    @pytest.mark.asyncio
    async def test_rejections(self, store) -> None:
        pipeline = _pipeline(store)
        cases = [
            (None, b"", "Request body is empty"),
            (None, b"{oops", "Request body is not valid JSON"),
            ([1, 2], b"[1, 2]", "Request body must be a JSON object"),
            (None, b"null", "Request body must be a JSON object"),
            ({}, b"{}", "Payload is empty"),
        ]
        for payload, raw, message in cases:
            with pytest.raises(ValidationError) as exc_info:
                pipeline.validate_payload(payload, raw)
            assert str(exc_info.value) == message

    @pytest.mark.asyncio
    async def test_size_limit(self, store) -> None:
        pipeline = _pipeline(store)
        pipeline.check_size(128)
        with pytest.raises(PayloadTooLargeError) as exc_info:
            pipeline.check_size(129)
        assert exc_info.value.status_code == 413

    @pytest.mark.asyncio
    async def test_strict_mode_requires_fields(self, store) -> None:
        pipeline = _pipeline(store, mode="strict")
        payload = {"device_id": "x"}
        with pytest.raises(MissingFieldsError):
            await pipeline.ingest(payload, _body(payload))
        assert await store.count() == 0


class TestIngest:

    @pytest.mark.asyncio
    async def test_stores_and_counts(self, store, valid_payload: Dict[str, Any]) -> None:
        pipeline = _pipeline(store)

        result = await pipeline.ingest(valid_payload, _body(valid_payload), {"ip": "10.0.0.1"})

        assert result.record.id == 1
        assert result.record.machine_id == "press-01"
        assert result.record.device_type == "hydraulic-press"
        assert result.record.event_timestamp == "2025-09-22T10:30:00Z"
        assert result.record.raw_payload == valid_payload
        assert result.record.metadata == {"ip": "10.0.0.1"}

        snapshot = pipeline.cache.snapshot()
        assert snapshot.total_messages == 1
        assert snapshot.connected_devices == 1
        assert snapshot.last_message == result.record.received_at

        stored = await store.get(result.record.id)
        assert stored.extracted_data == result.record.extracted_data

    @pytest.mark.asyncio
    async def test_anonymous_payload(self, store) -> None:
        pipeline = _pipeline(store)
        payload = {"reading": 3}

        result = await pipeline.ingest(payload, _body(payload))

        assert result.record.machine_id is None
        assert result.record.device_type == "unknown"
        assert pipeline.cache.snapshot().total_messages == 1
        assert pipeline.cache.snapshot().connected_devices == 0

    @pytest.mark.asyncio
    async def test_concurrent_ingests_keep_cache_in_step(self, store) -> None:
        pipeline = _pipeline(store)
        payloads = [{"machineId": f"m{i}", "reading": i} for i in range(20)]

        results = await asyncio.gather(*(pipeline.ingest(p, _body(p)) for p in payloads))

        assert sorted(r.record.id for r in results) == list(range(1, 21))
        assert pipeline.cache.total_messages == await store.count() == 20
        assert pipeline.cache.snapshot().connected_devices == 20
