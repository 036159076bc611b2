"""
Integration tests for the read endpoints.

GET /api/machine-data and GET /api/machine-data/{machineId}.
"""

from typing import Callable, Dict, List

from fastapi.testclient import TestClient

from machinedata.core.exceptions import StorageError


def _machines(count: int, device_type: str = "press") -> List[Dict]:
    return [{"machineId": f"m{i}", "deviceType": device_type, "value": i} for i in range(count)]


class TestListEndpoint:
    """Filtering and pagination."""

    def test_defaults(self, test_client: TestClient, post_payloads: Callable) -> None:
        post_payloads(_machines(3))

        response = test_client.get("/api/machine-data")
        assert response.status_code == 200

        body = response.json()
        assert body["success"] is True
        assert body["pagination"] == {"total": 3, "limit": 100, "offset": 0, "hasMore": False}
        assert [r["rawPayload"]["value"] for r in body["data"]] == [2, 1, 0]

    def test_pagination_pages_are_disjoint(self, test_client: TestClient, post_payloads: Callable) -> None:
        ids = post_payloads(_machines(5))

        first = test_client.get("/api/machine-data", params={"limit": 2, "offset": 0}).json()
        second = test_client.get("/api/machine-data", params={"limit": 2, "offset": 2}).json()

        first_ids = [r["id"] for r in first["data"]]
        second_ids = [r["id"] for r in second["data"]]
        assert first_ids + second_ids == sorted(ids, reverse=True)[:4]
        assert first["pagination"]["hasMore"] is True
        assert second["pagination"]["total"] == 5

        last = test_client.get("/api/machine-data", params={"limit": 2, "offset": 4}).json()
        assert [r["id"] for r in last["data"]] == [min(ids)]
        assert last["pagination"]["hasMore"] is False

    def test_filters(self, test_client: TestClient, post_payloads: Callable) -> None:
        post_payloads(_machines(2, "press") + [{"machineId": "lathe-1", "deviceType": "lathe"}])

        by_type = test_client.get("/api/machine-data", params={"deviceType": "lathe"}).json()
        assert [r["machineId"] for r in by_type["data"]] == ["lathe-1"]

        by_both = test_client.get(
            "/api/machine-data", params={"deviceType": "press", "machineId": "m1"}
        ).json()
        assert by_both["pagination"]["total"] == 1

        none = test_client.get(
            "/api/machine-data", params={"deviceType": "lathe", "machineId": "m1"}
        ).json()
        assert none["data"] == []
        assert none["pagination"]["total"] == 0

    def test_time_bounds(self, test_client: TestClient, post_payloads: Callable) -> None:
        post_payloads(_machines(2))

        window = test_client.get(
            "/api/machine-data", params={"from": "2000-01-01T00:00:00Z", "to": "2999-01-01T00:00:00Z"}
        ).json()
        assert window["pagination"]["total"] == 2

        future = test_client.get("/api/machine-data", params={"from": "2999-01-01T00:00:00Z"}).json()
        assert future["pagination"]["total"] == 0

        past = test_client.get("/api/machine-data", params={"to": "2000-01-01T00:00:00Z"}).json()
        assert past["pagination"]["total"] == 0

    def test_invalid_time_bound(self, test_client: TestClient) -> None:
        response = test_client.get("/api/machine-data", params={"from": "last tuesday"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["parameter"] == "from"

    def test_invalid_limit(self, test_client: TestClient) -> None:
        response = test_client.get("/api/machine-data", params={"limit": 0})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "validation_error"

    def test_limit_is_capped(self, test_client: TestClient) -> None:
        body = test_client.get("/api/machine-data", params={"limit": 50000}).json()
        assert body["pagination"]["limit"] == 1000

    def test_storage_failure(self, test_client: TestClient, monkeypatch) -> None:
        async def failing_query(*args, **kwargs):
            raise StorageError()

        monkeypatch.setattr(test_client.app.state.record_store, "query", failing_query)

        response = test_client.get("/api/machine-data")
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Database error occurred",
            "code": "storage_error",
        }


class TestMachineEndpoint:
    """Records for one machine."""

    def test_records_for_machine(self, test_client: TestClient, post_payloads: Callable) -> None:
        post_payloads([{"machineId": "press-01", "v": 1}, {"machineId": "press-02", "v": 2}])

        response = test_client.get("/api/machine-data/press-01")
        assert response.status_code == 200

        body = response.json()
        assert body["success"] is True
        assert body["machineId"] == "press-01"
        assert body["recordCount"] == 1
        assert body["data"][0]["rawPayload"] == {"machineId": "press-01", "v": 1}

    def test_limit(self, test_client: TestClient) -> None:
        store = test_client.app.state.record_store
        for i in range(3):
            test_client.portal.call(store.insert, "press-01", "press", None, {"n": i}, {"n": i})

        body = test_client.get("/api/machine-data/press-01", params={"limit": 2}).json()
        assert body["recordCount"] == 2
        assert [r["rawPayload"]["n"] for r in body["data"]] == [2, 1]

    def test_unknown_machine(self, test_client: TestClient) -> None:
        response = test_client.get("/api/machine-data/ghost")
        assert response.status_code == 404

        body = response.json()
        assert body["success"] is False
        assert body["error"] == "No data found for machine: ghost"
        assert body["machineId"] == "ghost"
