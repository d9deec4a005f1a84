"""
Tests for the detection engine lifecycle: model state, stream control and shutdown.
"""

import asyncio
import json
import os

import numpy as np
import pytest

from conftest import FakeDetector, FakeSource, detector_factory, failing_factory, raw
from inference.backend import ModelLoadError
from observation.base import DeviceAccessError
from pipeline.engine import DetectionEngine, ModelState, create_engine_from_config
from pipeline.sampler import SamplerConfig, SamplerState, TickPolicy


def make_engine(detector=None, factory=None, source=None, tmp_path=None, **sampler_kw):
    detector = detector or FakeDetector([[raw("person", 0.9), raw("car", 0.8)]])
    return DetectionEngine(
        source or FakeSource(),
        factory or detector_factory(detector),
        sampler_config=SamplerConfig(interval_ms=sampler_kw.get("interval_ms", 500)),
        export_dir=str(tmp_path) if tmp_path else "exports",
    )


class TestModelLifecycle:
    def test_load_model_ready(self):
        async def scenario():
            engine = make_engine()
            ok = await engine.load_model()
            return ok, engine.model_state, engine.model_error

        ok, state, error = asyncio.run(scenario())

        assert ok is True
        assert state == ModelState.READY
        assert error is None

    def test_load_failure_blocks_enable(self):
        async def scenario():
            engine = make_engine(factory=failing_factory("weights not found"))
            ok = await engine.load_model()
            with pytest.raises(ModelLoadError):
                engine.enable_detection()
            return ok, engine

        ok, engine = asyncio.run(scenario())

        assert ok is False
        assert engine.model_state == ModelState.FAILED
        assert "weights not found" in engine.model_error
        assert engine.sampler.state == SamplerState.IDLE

    def test_unexpected_factory_error_marks_failed(self):
        def broken():
            raise ValueError("could not convert string to float: 'abc'")

        async def scenario():
            engine = make_engine(factory=broken)
            ok = await engine.load_model()
            again = await engine.reload_model()
            with pytest.raises(ModelLoadError):
                engine.enable_detection()
            return ok, again, engine

        ok, again, engine = asyncio.run(scenario())

        assert (ok, again) == (False, False)
        assert engine.model_state == ModelState.FAILED
        assert engine.model_error.startswith("ValueError:")
        assert engine.sampler.state == SamplerState.IDLE

    def test_reload_after_failure(self):
        attempts = []
        detector = FakeDetector()

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise ModelLoadError("download interrupted")
            return detector

        async def scenario():
            engine = make_engine(factory=flaky)
            first = await engine.load_model()
            second = await engine.reload_model()
            engine.enable_detection()
            state = engine.sampler.state
            await engine.shutdown()
            return first, second, state

        first, second, state = asyncio.run(scenario())

        assert (first, second) == (False, True)
        assert state == SamplerState.SAMPLING

    def test_enable_loads_model_lazily(self):
        async def scenario():
            engine = make_engine()
            engine.enable_detection()
            before = engine.sampler.state
            await asyncio.sleep(0.05)
            after = engine.sampler.state
            model_state = engine.model_state
            await engine.shutdown()
            return before, after, model_state

        before, after, model_state = asyncio.run(scenario())

        assert before == SamplerState.WAITING_MODEL
        assert after == SamplerState.SAMPLING
        assert model_state == ModelState.READY


class TestStream:
    def test_start_and_stop_stream(self):
        source = FakeSource(devices=(0, 1))
        engine = make_engine(source=source)

        async def scenario():
            await engine.start_stream(1)
            started = (engine.is_streaming, engine.status()["device_id"])
            await engine.stop_stream()
            return started

        started = asyncio.run(scenario())

        assert started == (True, 1)
        assert not engine.is_streaming
        assert source.close_calls == 1
        assert engine.status()["device_id"] is None

    def test_device_access_error_is_recorded(self):
        engine = make_engine(source=FakeSource(fail_open=True))

        with pytest.raises(DeviceAccessError):
            asyncio.run(engine.start_stream())

        assert not engine.is_streaming
        assert "permission denied" in engine.status()["stream_error"]

    def test_successful_start_clears_stream_error(self):
        source = FakeSource(fail_open=True)
        engine = make_engine(source=source)
        with pytest.raises(DeviceAccessError):
            asyncio.run(engine.start_stream())

        source.fail_open = False
        asyncio.run(engine.start_stream())

        assert engine.stream_error is None

    def test_select_device_switches_running_stream(self):
        source = FakeSource(devices=(0, 1))
        engine = make_engine(source=source)

        async def scenario():
            await engine.start_stream(0)
            await engine.select_device(1)

        asyncio.run(scenario())

        assert source.device_id == 1
        assert engine.settings()["device_id"] == 1

    def test_select_device_failure_restores_previous_stream(self):
        source = FakeSource(devices=(0, 1))
        engine = make_engine(source=source)

        async def scenario():
            await engine.start_stream(1)
            with pytest.raises(DeviceAccessError):
                await engine.select_device(9)

        asyncio.run(scenario())

        assert engine.is_streaming
        assert source.device_id == 1
        assert engine.settings()["device_id"] == 1
        assert "9" in engine.stream_error

    def test_select_device_while_stopped_only_remembers(self):
        source = FakeSource(devices=(0, 1))
        engine = make_engine(source=source)

        asyncio.run(engine.select_device(1))

        assert source.open_calls == 0
        assert engine.selected_device == 1

    def test_stop_stream_disables_detection(self):
        async def scenario():
            engine = make_engine()
            await engine.load_model()
            await engine.start_stream()
            engine.enable_detection()
            await engine.stop_stream()
            return engine

        engine = asyncio.run(scenario())

        assert engine.sampler.state == SamplerState.IDLE
        assert engine.current_detections == ()

    def test_list_devices(self):
        engine = make_engine(source=FakeSource(devices=(0, 2)))
        assert [d.device_id for d in engine.list_devices()] == [0, 2]


class TestSettings:
    def test_set_threshold_and_interval(self):
        async def scenario():
            engine = make_engine()
            engine.set_confidence_threshold(0.45)
            engine.set_interval(200)
            return engine.settings()

        settings = asyncio.run(scenario())

        assert settings["confidence_threshold"] == 0.45
        assert settings["interval_ms"] == 200
        assert settings["detection_enabled"] is False

    @pytest.mark.parametrize("value", [0.0, 0.95, 0.33])
    def test_invalid_threshold_rejected(self, value):
        engine = make_engine()
        with pytest.raises(ValueError):
            engine.set_confidence_threshold(value)
        assert engine.settings()["confidence_threshold"] == 0.6


class TestEndToEnd:
    def test_sampling_feeds_log_and_overlay(self, tmp_path):
        async def scenario():
            engine = make_engine(tmp_path=tmp_path, interval_ms=50)
            async with engine.running(preload_model=True, start_stream=True, enable_detection=True):
                await asyncio.sleep(0.3)
                snapshot = engine.snapshot()
                jpeg = engine.annotated_jpeg()
                frame = engine.annotated_frame()
                path = engine.export_to_file()
            return engine, snapshot, jpeg, frame, path

        engine, snapshot, jpeg, frame, path = asyncio.run(scenario())

        assert len(snapshot.logs) >= 1
        assert snapshot.stats.person_count == snapshot.stats.vehicle_count
        assert jpeg[:2] == b"\xff\xd8"
        assert isinstance(frame, np.ndarray) and frame.any()
        with open(path) as f:
            doc = json.load(f)
        assert doc["totalLogs"] == len(doc["logs"])
        assert os.path.basename(path).startswith("detection-log-")
        # shutdown released everything
        assert not engine.is_streaming
        assert engine.sampler.state == SamplerState.IDLE

    def test_clear_logs(self):
        async def scenario():
            engine = make_engine()
            await engine.load_model()
            await engine.start_stream()
            engine.enable_detection()
            await engine.sampler.tick()
            before = len(engine.snapshot().logs)
            engine.clear_logs()
            after = engine.snapshot()
            await engine.shutdown()
            return before, after

        before, after = asyncio.run(scenario())

        assert before == 1
        assert after.logs == ()
        assert after.stats.total_detections == 0

    def test_shutdown_closes_detector_and_source(self):
        detector = FakeDetector()
        source = FakeSource()

        async def scenario():
            engine = make_engine(detector=detector, source=source)
            await engine.start(preload_model=True, start_stream=True, enable_detection=True)
            await engine.reload_model()
            await engine.shutdown()
            return engine

        engine = asyncio.run(scenario())

        assert detector.closed
        assert not source.is_open
        assert engine.model_state == ModelState.NOT_LOADED

    def test_start_survives_camera_and_model_failures(self):
        async def scenario():
            engine = make_engine(source=FakeSource(fail_open=True), factory=failing_factory())
            async with engine.running(preload_model=True, start_stream=True, enable_detection=True):
                await engine.reload_model()
                return engine.status()

        status = asyncio.run(scenario())

        assert status["streaming"] is False
        assert status["stream_error"]
        assert status["model_state"] == "failed"
        assert status["sampler_state"] == "idle"


class TestFactory:
    def test_create_engine_from_config(self, valid_config):
        valid_config["detection"]["tick_policy"] = "skip_if_busy"
        valid_config["detection"]["interval_ms"] = 300
        valid_config["camera"]["device_id"] = 1
        valid_config["export_dir"] = "out/logs"

        engine = create_engine_from_config(valid_config)

        assert engine.sampler.config.tick_policy == TickPolicy.SKIP_IF_BUSY
        assert engine.sampler.config.interval_ms == 300
        assert engine.selected_device == 1
        assert engine.export_dir == "out/logs"
        assert engine.source._opencv_config.resolution == (1280, 720)
        assert engine.model_state == ModelState.NOT_LOADED
