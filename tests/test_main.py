"""
HTTP and WebSocket surface, driven against in-memory capabilities.
"""
import time

import pytest
from fastapi.testclient import TestClient

from emoscan.controller import LifecycleController
from emoscan.main import create_app

from .fakes import FakeCamera, FakeEngine, FakeModels


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def client(settings, camera, happy_face):
    controller = LifecycleController(
        models=FakeModels(),
        engine=FakeEngine(happy_face),
        camera=camera,
        settings=settings,
    )
    app = create_app(settings, controller)
    with TestClient(app) as test_client:
        for _ in range(100):
            if test_client.get("/state").json()["models_ready"]:
                break
            time.sleep(0.01)
        yield test_client


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "state": "models_ready"}


def test_camera_scan_stop_flow(client, camera):
    started = client.post("/camera/start").json()
    assert started["state"] == "camera_on"
    assert started["camera_on"] is True

    scanned = client.post("/scan").json()
    assert scanned["scan_count"] == 1
    assert scanned["scan_result"]["emotion"] == "happy"
    assert scanned["scan_result"]["quality"] == "poor"
    assert scanned["scan_result"]["face_size"] == "200x200px"

    stopped = client.post("/camera/stop").json()
    assert stopped["state"] == "camera_stopped"
    assert stopped["scan_result"] is None
    assert stopped["scan_count"] == 1
    assert len(camera.released) == 1


def test_intents_endpoint(client):
    assert client.post("/intents", json={"intent": "start"}).json()["state"] == "camera_on"
    assert client.post("/intents", json={"intent": "scan"}).json()["scan_count"] == 1


def test_unknown_intent_is_422(client):
    response = client.post("/intents", json={"intent": "reboot"})
    assert response.status_code == 422


def test_scan_refusal_is_reported(client):
    body = client.post("/scan").json()
    assert body["scan_result"] is None
    assert body["scan_count"] == 0
    assert body["last_notice"]["code"] == "scan_refused"
    assert body["last_notice"]["message"] == "Start the camera before scanning."


def test_session_name_drives_greeting(client):
    assert client.get("/session").json() == {"name": None, "onboarded": False}

    response = client.post("/session", json={"name": "   "})
    assert response.json() == {"name": "User", "onboarded": True}
    assert "emoscan_user" in response.headers["set-cookie"]
    assert "Max-Age" not in response.headers["set-cookie"]

    client.post("/session", json={"name": " Ada "})
    client.post("/camera/start")
    body = client.post("/scan").json()
    assert body["scan_result"]["greeting"] == "Ada, you're radiating joy! 🌟"


def test_debug_performance(client):
    body = client.get("/debug/performance").json()
    assert "cpu_percent" in body
    assert "memory_percent" in body


def test_ui_websocket_streams_events_and_accepts_intents(client):
    with client.websocket_connect("/ws/ui") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "snapshot"
        assert snapshot["state"] == "models_ready"

        ws.send_json({"intent": "start"})
        states = []
        while "camera_on" not in states:
            message = ws.receive_json()
            if message["type"] == "state":
                states.append(message["state"])
        assert states == ["camera_starting", "camera_on"]
