"""
Integration tests for POST /api/machine-data.

Tests ingestion using FastAPI TestClient.
"""

from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient


class TestFlexibleIngestion:
    """Free-form payloads are accepted and fields extracted."""

    def test_ingest_documented_shape(self, test_client: TestClient, valid_payload: Dict[str, Any]) -> None:
        response = test_client.post("/api/machine-data", json=valid_payload)
        assert response.status_code == 201

        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Data received and stored"
        assert isinstance(body["id"], int)
        assert body["timestamp"]
        assert body["extracted"] == {
            "machineId": "press-01",
            "deviceType": "hydraulic-press",
            "eventTimestamp": "2025-09-22T10:30:00Z",
        }
        assert "X-Request-ID" in response.headers

    def test_ingest_alternative_field_names(self, test_client: TestClient, firmware_payload: Dict[str, Any]) -> None:
        response = test_client.post("/api/machine-data", json=firmware_payload)
        assert response.status_code == 201
        assert response.json()["extracted"] == {
            "machineId": "sensor-7",
            "deviceType": "thermometer",
            "eventTimestamp": "2025-09-22T10:31:00Z",
        }

    def test_stored_record_shape(self, test_client: TestClient, firmware_payload: Dict[str, Any]) -> None:
        test_client.post("/api/machine-data", json=firmware_payload)

        response = test_client.get("/api/machine-data/sensor-7")
        assert response.status_code == 200
        record = response.json()["data"][0]

        assert record["rawPayload"] == firmware_payload
        assert record["extractedData"] == {
            "time": "2025-09-22T10:31:00Z",
            "celsius": 21.4,
            "battery": 0.87,
        }
        assert record["machineId"] == "sensor-7"
        assert record["deviceType"] == "thermometer"
        assert record["eventTimestamp"] == "2025-09-22T10:31:00Z"
        assert record["receivedAt"]
        assert record["metadata"]["ip"] == "testclient"
        assert record["metadata"]["contentLength"] > 0
        assert "userAgent" in record["metadata"]

    def test_payload_without_identity(self, test_client: TestClient) -> None:
        response = test_client.post("/api/machine-data", json={"reading": 3, "timestamp": "garbage"})
        assert response.status_code == 201
        assert response.json()["extracted"] == {
            "machineId": None,
            "deviceType": "unknown",
            "eventTimestamp": None,
        }


class TestRejectedPayloads:
    """Invalid bodies are refused with 400/413 and nothing is stored."""

    def _assert_nothing_stored(self, client: TestClient) -> None:
        listing = client.get("/api/machine-data")
        assert listing.json()["pagination"]["total"] == 0

    def test_empty_body(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/api/machine-data",
            content=b"",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Request body is empty"
        assert body["code"] == "validation_error"
        self._assert_nothing_stored(test_client)

    def test_invalid_json(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/api/machine-data",
            content=b'{"machineId": "m1", "value": ',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Request body is not valid JSON"
        self._assert_nothing_stored(test_client)

    @pytest.mark.parametrize("constant", [b"NaN", b"Infinity", b"-Infinity"])
    def test_non_standard_constants(self, test_client: TestClient, constant: bytes) -> None:
        response = test_client.post(
            "/api/machine-data",
            content=b'{"machineId": "m1", "reading": ' + constant + b"}",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Request body is not valid JSON"
        self._assert_nothing_stored(test_client)

    def test_non_object_body(self, test_client: TestClient) -> None:
        response = test_client.post("/api/machine-data", json=[{"machineId": "m1"}])
        assert response.status_code == 400
        assert response.json()["error"] == "Request body must be a JSON object"

    def test_empty_object(self, test_client: TestClient) -> None:
        response = test_client.post("/api/machine-data", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Payload is empty"

    def test_oversized_payload(self, test_client: TestClient) -> None:
        test_client.app.state.pipeline.settings.ingestion.max_payload_bytes = 64

        response = test_client.post("/api/machine-data", json={"machineId": "big", "blob": "x" * 200})
        assert response.status_code == 413
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "payload_too_large"
        assert body["limit"] == 64
        self._assert_nothing_stored(test_client)


class TestStrictIngestion:
    """Strict mode requires machineId, timestamp and data."""

    def test_valid_payload(self, strict_client: TestClient, valid_payload: Dict[str, Any]) -> None:
        response = strict_client.post("/api/machine-data", json=valid_payload)
        assert response.status_code == 201
        assert response.json()["extracted"]["machineId"] == "press-01"

    def test_empty_data_object_accepted(self, strict_client: TestClient) -> None:
        payload = {"machineId": "m1", "timestamp": "2025-01-01T00:00:00Z", "data": {}}
        response = strict_client.post("/api/machine-data", json=payload)
        assert response.status_code == 201

        stored = strict_client.get("/api/machine-data").json()["data"][0]
        assert stored["rawPayload"] == payload

    def test_free_form_payload_rejected(self, strict_client: TestClient, firmware_payload: Dict[str, Any]) -> None:
        response = strict_client.post("/api/machine-data", json=firmware_payload)
        assert response.status_code == 400

        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Missing required fields: machineId, timestamp, data"
        assert body["receivedFields"] == list(firmware_payload)
        assert body["missingFields"] == ["machineId", "timestamp", "data"]

    def test_invalid_timestamp(self, strict_client: TestClient, valid_payload: Dict[str, Any]) -> None:
        valid_payload["timestamp"] = "not-a-date"
        response = strict_client.post("/api/machine-data", json=valid_payload)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid timestamp format. Use ISO 8601 format."
