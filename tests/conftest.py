"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

from pathlib import Path
from typing import Any, Callable, Dict, Generator, List
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from machinedata.config import DatabaseSettings, reload_settings
from machinedata.core.store import RecordStore
from machinedata.main import app


def _configure(monkeypatch: pytest.MonkeyPatch, db_path: Path, **env: str) -> None:
    monkeypatch.delenv("DB_PATH", raising=False)
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.setenv("MACHINEDATA_DATABASE_PATH", str(db_path))
    for name, value in env.items():
        monkeypatch.setenv(name, value)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Temporary SQLite database file."""
    return tmp_path / "machine_data.db"


@pytest.fixture
def test_client(monkeypatch: pytest.MonkeyPatch, db_path: Path) -> Generator[TestClient, None, None]:
    """FastAPI test client in flexible mode backed by a temporary database."""
    _configure(monkeypatch, db_path)

    # Ignore any config.yaml in the working directory
    with patch("machinedata.config.load_config_file", return_value={}):
        reload_settings()

        with TestClient(app) as client:
            yield client

    reload_settings()


@pytest.fixture
def strict_client(monkeypatch: pytest.MonkeyPatch, db_path: Path) -> Generator[TestClient, None, None]:
    """FastAPI test client with the strict ingestion policy."""
    _configure(monkeypatch, db_path, MACHINEDATA_INGESTION_MODE="strict")

    with patch("machinedata.config.load_config_file", return_value={}):
        reload_settings()

        with TestClient(app) as client:
            yield client

    reload_settings()


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    """Initialized record store on a temporary database."""
    record_store = RecordStore(DatabaseSettings(path=tmp_path / "store.db"))
    await record_store.initialize()
    yield record_store
    await record_store.close()


@pytest.fixture
def valid_payload() -> Dict[str, Any]:
    """Payload in the documented machineId/timestamp/data shape."""
    return {
        "machineId": "press-01",
        "deviceType": "hydraulic-press",
        "timestamp": "2025-09-22T10:30:00Z",
        "data": {
            "pressure": 212.5,
            "temperature": 61.2,
            "cycles": 1042,
        },
    }


@pytest.fixture
def firmware_payload() -> Dict[str, Any]:
    """Free-form payload using alternative field names."""
    return {
        "device_id": "sensor-7",
        "type": "thermometer",
        "time": "2025-09-22T10:31:00Z",
        "celsius": 21.4,
        "battery": 0.87,
    }


@pytest.fixture
def post_payloads(test_client: TestClient) -> Callable[[List[Dict[str, Any]]], List[int]]:
    """Post several payloads and return the assigned record ids."""
    def _post(payloads: List[Dict[str, Any]]) -> List[int]:
        ids = []
        for payload in payloads:
            response = test_client.post("/api/machine-data", json=payload)
            assert response.status_code == 201, response.text
            ids.append(response.json()["id"])
        return ids

    return _post
