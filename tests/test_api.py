"""
Tests for the HTTP API, run against a fake camera and a scripted detector.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeDetector, FakeSource, detector_factory, failing_factory, raw
from pipeline.engine import DetectionEngine
from pipeline.sampler import SamplerConfig
from web.app import create_app
from web.routes.api import mjpeg_frames
from web.services.config_service import ConfigService


def build_app(tmp_path, source=None, factory=None):
    detector = FakeDetector([[raw("person", 0.9), raw("dog", 0.7), raw("chair", 0.2)]])
    engine = DetectionEngine(
        source or FakeSource(),
        factory or detector_factory(detector),
        sampler_config=SamplerConfig(interval_ms=50),
        export_dir=str(tmp_path / "exports"),
    )
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    app = create_app(engine, config_service=ConfigService(str(config_dir)), start_options={"preload_model": True})
    return app, engine


def wait_for(client, path, predicate, timeout=3.0):
    deadline = time.time() + timeout
    while True:
        body = client.get(path).json()
        if predicate(body) or time.time() > deadline:
            return body
        time.sleep(0.05)


@pytest.fixture
def client(tmp_path):
    app, _ = build_app(tmp_path)
    with TestClient(app) as c:
        wait_for(c, "/api/status", lambda s: s["model_state"] == "ready")
        yield c


def test_status(client):
    status = client.get("/api/status").json()

    assert status["streaming"] is False
    assert status["model_state"] == "ready"
    assert status["sampler_state"] == "idle"
    assert status["tick_policy"] == "overlap"
    assert status["settings"]["confidence_threshold"] == 0.6


def test_stats_start_at_zero(client):
    assert client.get("/api/stats").json() == {
        "total_detections": 0,
        "person_count": 0,
        "vehicle_count": 0,
        "animal_count": 0,
        "object_count": 0,
        "fps": 0,
        "avg_confidence": 0.0,
    }


def test_devices(client):
    assert client.get("/api/devices").json() == [
        {"device_id": 0, "label": "Camera 0"},
        {"device_id": 1, "label": "Camera 1"},
    ]


def test_snapshot_404_before_sampling(client):
    assert client.get("/api/snapshot.jpg").status_code == 404


def test_detection_flow(client):
    assert client.post("/api/stream/start", json={"device_id": 1}).json()["device_id"] == 1
    assert client.post("/api/detection/start").json()["sampler_state"] == "sampling"

    logs = wait_for(client, "/api/logs", lambda body: len(body) >= 2)
    assert len(logs) >= 2
    assert logs[0]["frame_number"] > logs[1]["frame_number"]
    assert [d["label"] for d in logs[0]["detections"]] == ["person", "dog"]
    assert [d["category"] for d in logs[0]["detections"]] == ["person", "animal"]
    assert len(client.get("/api/logs", params={"limit": 1}).json()) == 1

    current = client.get("/api/detections/current").json()
    assert {d["label"] for d in current} == {"person", "dog"}

    stats = client.get("/api/stats").json()
    assert stats["person_count"] == stats["animal_count"]
    assert stats["object_count"] == 0
    assert stats["avg_confidence"] == pytest.approx(80.0)

    snapshot = client.get("/api/snapshot.jpg")
    assert snapshot.status_code == 200
    assert snapshot.headers["content-type"] == "image/jpeg"

    stopped = client.post("/api/detection/stop").json()
    assert stopped["sampler_state"] == "idle"
    assert client.get("/api/detections/current").json() == []

    client.post("/api/stream/stop")
    assert client.get("/api/status").json()["streaming"] is False


def test_export_and_clear(client):
    client.post("/api/stream/start")
    client.post("/api/detection/start")
    wait_for(client, "/api/logs", lambda body: len(body) >= 1)
    client.post("/api/detection/stop")

    response = client.get("/api/logs/export")
    assert response.status_code == 200
    assert "detection-log-" in response.headers["content-disposition"]
    doc = response.json()
    assert doc["totalLogs"] == len(doc["logs"]) >= 1
    assert doc["stats"]["totalDetections"] >= 2
    assert doc["logs"][0]["detections"][0] == {
        "class": "person",
        "category": "person",
        "confidence": 90,
        "bbox": [10.0, 20.0, 100.0, 50.0],
    }

    saved = client.post("/api/logs/export").json()
    assert saved["path"].endswith(".json")

    assert client.delete("/api/logs").json() == {"ok": True}
    assert client.get("/api/logs").json() == []
    stats = client.get("/api/stats").json()
    assert stats["total_detections"] == 0
    assert stats["avg_confidence"] == 0.0


def test_settings_update_and_persist(tmp_path):
    app, _ = build_app(tmp_path)
    with TestClient(app) as client:
        body = client.put("/api/settings", json={"confidence_threshold": 0.75, "interval_ms": 300}).json()
        assert body["confidence_threshold"] == 0.75
        assert body["interval_ms"] == 300

        assert client.get("/api/settings").json()["interval_ms"] == 300

    overrides = ConfigService(str(tmp_path / "config")).load_overrides()
    assert overrides["detection"] == {"confidence_threshold": 0.75, "interval_ms": 300}


@pytest.mark.parametrize("payload", [
    {"confidence_threshold": 0.95},
    {"confidence_threshold": 0.33},
    {"interval_ms": 25},
    {"interval_ms": 175},
])
def test_settings_rejects_out_of_range(client, payload):
    response = client.put("/api/settings", json=payload)

    assert response.status_code == 422
    settings = client.get("/api/settings").json()
    assert settings["confidence_threshold"] == 0.6
    assert settings["interval_ms"] == 50


def test_stream_start_device_error(tmp_path):
    app, _ = build_app(tmp_path, source=FakeSource(fail_open=True))
    with TestClient(app) as client:
        response = client.post("/api/stream/start")

        assert response.status_code == 503
        assert "permission denied" in response.json()["detail"]
        assert client.get("/api/status").json()["stream_error"]


def test_detection_start_with_failed_model(tmp_path):
    app, _ = build_app(tmp_path, factory=failing_factory("weights not found"))
    with TestClient(app) as client:
        status = wait_for(client, "/api/status", lambda s: s["model_state"] == "failed")
        assert status["model_error"] == "weights not found"

        response = client.post("/api/detection/start")
        assert response.status_code == 409
        assert client.post("/api/model/reload").status_code == 409
        assert client.get("/api/status").json()["sampler_state"] == "idle"


def test_shutdown_releases_camera(tmp_path):
    source = FakeSource()
    app, _ = build_app(tmp_path, source=source)
    with TestClient(app) as client:
        client.post("/api/stream/start")
        assert source.is_open

    assert not source.is_open


def test_settings_device_failure_applies_nothing(tmp_path):
    source = FakeSource(devices=(0, 1))
    app, engine = build_app(tmp_path, source=source)
    with TestClient(app) as client:
        client.post("/api/stream/start", json={"device_id": 1})

        response = client.put("/api/settings", json={"confidence_threshold": 0.3, "device_id": 9})

        assert response.status_code == 503
        settings = client.get("/api/settings").json()
        assert settings["confidence_threshold"] == 0.6
        assert settings["device_id"] == 1
        status = client.get("/api/status").json()
        assert status["streaming"] is True
        assert status["device_id"] == 1

    assert ConfigService(str(tmp_path / "config")).load_overrides() == {}


def test_settings_enable_with_failed_model_applies_nothing(tmp_path):
    app, _ = build_app(tmp_path, factory=failing_factory("weights not found"))
    with TestClient(app) as client:
        wait_for(client, "/api/status", lambda s: s["model_state"] == "failed")

        response = client.put("/api/settings", json={"interval_ms": 300, "detection_enabled": True})

        assert response.status_code == 409
        assert client.get("/api/settings").json()["interval_ms"] == 50

    assert ConfigService(str(tmp_path / "config")).load_overrides() == {}


def test_mjpeg_frames_yield_annotated_jpeg(tmp_path):
    _, engine = build_app(tmp_path)

    async def scenario():
        await engine.load_model()
        await engine.start_stream()
        engine.enable_detection()
        await engine.sampler.tick()
        frames = mjpeg_frames(engine, 0.01)
        chunk = await frames.__anext__()
        await engine.shutdown()
        remaining = [c async for c in frames]
        return chunk, remaining

    chunk, remaining = asyncio.run(scenario())

    assert chunk.startswith(b"--frame\r\nContent-Type: image/jpeg\r\n\r\n\xff\xd8")
    assert remaining == []
