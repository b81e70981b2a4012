# tests/test_events_api.py
import pytest
from fastapi.testclient import TestClient

@pytest.mark.stage2
def test_connection_stats(client: TestClient):
    response = client.get("/events/stats")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_connections"] == sum(u["connection_count"] for u in data["users"])

@pytest.mark.stage2
def test_stream_requires_known_user(client: TestClient):
    response = client.get("/events/ghost")
    assert response.status_code == 404
    assert response.json()["metadata"]["errorCode"] == 1008
