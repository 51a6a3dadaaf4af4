import numpy as np
import pytest
from fastapi.testclient import TestClient

from alpaca_dashboard.config.settings import DeviceConfig, Settings
from alpaca_dashboard.imaging.imagebytes import encode_image_bytes
from alpaca_dashboard.server import build_app

SENSOR = np.array([[100, 60], [50, 200]], dtype=np.uint8)


@pytest.fixture
def client():
    app = build_app(Settings(force_simulation=True))
    with TestClient(app) as test_client:
        yield test_client


def _add_focuser(client, device_id="f1"):
    response = client.post("/api/devices", json={"id": device_id, "type": "focuser", "name": "Focuser"})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_add_list_and_remove_device(client):
    created = _add_focuser(client)
    assert created["id"] == "f1"
    assert created["state"] == "idle"
    assert created["simulated"] is True

    assert [device["id"] for device in client.get("/api/devices").json()] == ["f1"]

    assert client.delete("/api/devices/f1").status_code == 200
    assert client.get("/api/devices/f1").status_code == 404


def test_duplicate_device_is_a_conflict(client):
    _add_focuser(client)

    response = client.post("/api/devices", json={"id": "f1", "type": "camera"})

    assert response.status_code == 409


def test_unknown_device_type_is_rejected(client):
    response = client.post("/api/devices", json={"id": "x1", "type": "toaster"})

    assert response.status_code == 422


def test_connect_read_write_and_disconnect(client):
    _add_focuser(client)

    connected = client.put("/api/devices/f1/connected", json={"connected": True})
    assert connected.status_code == 200
    assert connected.json()["state"] == "connected"
    assert connected.json()["polling"] is True
    assert connected.json()["properties"]["maxstep"] == 20000

    assert client.get("/api/devices/f1/properties/position").json()["value"] == 5000
    assert client.put("/api/devices/f1/properties/position", json={"value": 250}).status_code == 200
    assert client.get("/api/devices/f1").json()["properties"]["position"] == 250

    moved = client.post("/api/devices/f1/methods/move", json={"Position": 300})
    assert moved.status_code == 200
    assert moved.json()["method"] == "move"

    stopped = client.post("/api/devices/f1/polling/stop")
    assert stopped.json() == {"device_id": "f1", "polling": False}

    disconnected = client.put("/api/devices/f1/connected", json={"connected": False})
    assert disconnected.json()["state"] == "idle"
    assert disconnected.json()["properties"]["position"] is None


def test_polling_requires_a_connected_device(client):
    _add_focuser(client)

    assert client.post("/api/devices/f1/polling/start").status_code == 409


def test_device_error_maps_to_bad_gateway(client):
    _add_focuser(client)

    response = client.post("/api/devices/f1/methods/selfdestruct", json={})

    assert response.status_code == 502
    assert response.json()["error"]["type"] == "device"


def test_latest_image_is_404_until_an_exposure_downloads(client):
    client.post("/api/devices", json={"id": "c1", "type": "camera"})
    assert client.get("/api/devices/c1/image").status_code == 404

    client.put("/api/devices/c1/connected", json={"connected": True})
    client.post("/api/devices/c1/methods/startexposure", json={"Duration": 0.0, "Light": True})
    downloaded = client.post("/api/devices/c1/image/download")
    assert downloaded.status_code == 200

    image = client.get("/api/devices/c1/image").json()
    assert image["width"] == 64
    assert image["is_debayered"] is True


def test_decode_endpoint_returns_summary_and_histogram(client):
    response = client.post(
        "/api/images/decode",
        params={"bayer_pattern": "RGGB"},
        content=encode_image_bytes(SENSOR),
        headers={"content-type": "application/imagebytes"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["image"]["min_pixel_value"] == 59
    assert body["image"]["max_pixel_value"] == 84
    assert len(body["histogram"]) == 256
    assert sum(body["histogram"]) == 4


def test_decode_endpoint_rejects_bad_input(client):
    truncated = client.post("/api/images/decode", content=b"\x01\x00\x00\x00")
    assert truncated.status_code == 422

    bad_pattern = client.post(
        "/api/images/decode",
        params={"bayer_pattern": "XYZW"},
        content=encode_image_bytes(SENSOR),
    )
    assert bad_pattern.status_code == 422


def test_event_stream_delivers_device_events(client):
    with client.websocket_connect("/api/events") as websocket:
        _add_focuser(client, "f9")
        message = websocket.receive_json()

    assert message == {"type": "deviceAdded", "device_id": "f9", "device_type": "focuser"}


def test_configured_devices_are_registered_at_startup():
    settings = Settings(
        force_simulation=True,
        devices=[DeviceConfig(id="cam", type="camera", auto_connect=True), DeviceConfig(id="foc", type="focuser")],
    )

    with TestClient(build_app(settings)) as client:
        devices = {device["id"]: device for device in client.get("/api/devices").json()}

    assert devices["cam"]["state"] == "connected"
    assert devices["foc"]["state"] == "idle"
