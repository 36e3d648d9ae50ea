import pytest
from fastapi.testclient import TestClient

from main import create_app
from tilesync.config_loader import AppConfig
from tilesync.storage.kv_store import MemoryKeyValueStore
from tilesync.sync.remote import MemoryDocumentStore


@pytest.fixture
def client():
    app = create_app(AppConfig(), MemoryKeyValueStore(), MemoryDocumentStore())
    with TestClient(app) as client:
        yield client


def test_breakpoints(client):
    body = client.get("/api/breakpoints", params={"width": 1300}).json()
    assert body["active"] == "lg"
    assert body["breakpoints"][0] == {"name": "xxxl", "min_width": 2560, "columns": 24}
    assert "active" not in client.get("/api/breakpoints").json()


def test_widget_lifecycle(client):
    response = client.post("/api/widgets", json={"type": "clock", "config": {"tz": "UTC"}})
    assert response.status_code == 200
    widget_id = response.json()["id"]

    dashboard = client.get("/api/dashboard").json()
    assert dashboard["widgets"] == [{"id": widget_id, "type": "clock", "config": {"tz": "UTC"}}]
    assert len(dashboard["layouts"]) == 8
    assert dashboard["layouts"]["lg"][0]["id"] == widget_id

    assert client.put(f"/api/widgets/{widget_id}/config", json={"tz": "CET"}).status_code == 200
    assert client.get(f"/api/widgets/{widget_id}/config").json() == {"tz": "CET"}

    moved = client.post(f"/api/widgets/{widget_id}/move", json={"breakpoint": "lg", "x": 4, "y": 2}).json()
    assert (moved["x"], moved["y"]) == (4, 2)
    resized = client.post(f"/api/widgets/{widget_id}/resize", json={"breakpoint": "lg", "w": 5, "h": 4}).json()
    assert (resized["w"], resized["h"]) == (5, 4)

    assert client.delete(f"/api/widgets/{widget_id}").status_code == 200
    assert client.delete(f"/api/widgets/{widget_id}").status_code == 404
    assert client.get("/api/dashboard").json()["widgets"] == []


def test_put_layout(client):
    widget_id = client.post("/api/widgets", json={"type": "clock"}).json()["id"]
    body = client.put("/api/layouts/md", json=[{"i": widget_id, "x": 20, "y": 0, "w": 4, "h": 2}]).json()
    item = body["md"][0]
    assert (item["x"], item["w"]) == (6, 4)
    assert client.put("/api/layouts/huge", json=[]).status_code == 404


def test_errors(client):
    assert client.get("/api/widgets/missing/config").status_code == 404
    assert client.post("/api/widgets/missing/move", json={"breakpoint": "lg", "x": 0, "y": 0}).status_code == 404
    assert client.post("/api/widgets", json={"type": "clock", "config": []}).status_code == 422
    assert client.post("/api/session/login", json={"user_id": ""}).status_code == 400


def test_session_and_network(client):
    assert client.get("/api/sync/status").json()["status"] == "idle"

    summary = client.post("/api/session/login", json={"user_id": "u1"}).json()
    assert summary["user_id"] == "u1"
    assert summary["status"] == "success"

    assert client.post("/api/network", json={"online": False}).json()["online"] is False
    assert client.post("/api/network", json={"online": True}).json()["online"] is True

    client.post("/api/widgets", json={"type": "clock"})
    logout = client.post("/api/session/logout").json()
    assert logout["user_id"] is None
    assert logout["status"] == "idle"
    assert client.get("/api/dashboard").json()["widgets"] == []
