# tests/test_health.py
from fastapi import status
from fastapi.testclient import TestClient


def test_root_responds(client: TestClient) -> None:
    r = client.get("/")
    assert r.status_code == status.HTTP_200_OK
    assert r.json()["socket"] == "/api/v1/ws"


def test_health_reports_presence(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"status": "ok", "users": 0, "usernames": []}


def test_health_counts_joined_users(client: TestClient) -> None:
    with client.websocket_connect("/api/v1/ws") as ws:
        ws.receive_json()  # connected
        ws.receive_json()  # initial presence
        ws.send_json({"event": "join", "data": {"username": "alice"}})
        assert ws.receive_json() == {"event": "presence_update", "data": ["alice"]}

        data = client.get("/health").json()
        assert data["users"] == 1
        assert data["usernames"] == ["alice"]
