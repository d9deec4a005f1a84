"""
Detection engine for the live detection monitor.

This module composes the capture source, the detector lifecycle, the
detection sampler and the aggregator, and is the single object the web
layer talks to. It owns explicit lifecycle state instead of module-level
singletons:

- the model is loaded once (eagerly at start, or on first enable) in a
  worker thread; a failure leaves the model in the ``failed`` state until
  ``reload_model()`` succeeds
- the camera is acquired by ``start_stream()`` and always released by
  ``stop_stream()`` and ``shutdown()``; device open and release run in a
  worker thread so a slow camera does not stall the event loop
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import numpy as np

from analytics.aggregator import AggregatorSnapshot, DetectionAggregator
from analytics.export import build_export, write_export
from inference import create_detector_from_config
from inference.backend import Detector, ModelLoadError
from models.config import Config, check_confidence_threshold, check_interval_ms
from models.detection import Detection
from models.frame import FrameData
from observation import create_source_from_config
from observation.base import CaptureDevice, DeviceAccessError, DeviceId, ObservationSource
from pipeline.overlay import draw_detections, encode_jpeg
from pipeline.sampler import DetectionSampler, SamplerConfig, TickPolicy

DetectorFactory = Callable[[], Detector]


class ModelState(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class DetectionEngine:
    """
    Owns everything between the camera and the presentation layer.

    Example:
        engine = DetectionEngine(source, detector_factory)
        async with engine.running(start_stream=True, enable_detection=True):
            ...
    """

    def __init__(
        self,
        source: ObservationSource,
        detector_factory: DetectorFactory,
        aggregator: Optional[DetectionAggregator] = None,
        sampler_config: Optional[SamplerConfig] = None,
        export_dir: str = "exports",
    ):
        self.source = source
        self.aggregator = aggregator or DetectionAggregator()
        self.sampler = DetectionSampler(source, self.aggregator, sampler_config)
        self.export_dir = export_dir
        self._detector_factory = detector_factory
        self._detector: Optional[Detector] = None
        self._load_task: Optional[asyncio.Task] = None
        self.model_state = ModelState.NOT_LOADED
        self.model_error: Optional[str] = None
        self.stream_error: Optional[str] = None
        self.selected_device: Optional[DeviceId] = None
        self._latest_frame: Optional[FrameData] = None
        self._latest_detections: List[Detection] = []
        self.sampler.add_callback(self._on_sample)

    # Model lifecycle

    async def load_model(self) -> bool:
        """Load the detector in a worker thread; returns True when ready."""
        if self.model_state == ModelState.READY:
            return True
        self.model_state = ModelState.LOADING
        self.model_error = None
        logging.info("Loading detection model...")
        try:
            detector = await asyncio.to_thread(self._detector_factory)
        except ModelLoadError as e:
            self._model_failed(str(e))
            return False
        except Exception as e:
            self._model_failed(f"{type(e).__name__}: {e}")
            return False

        self._detector = detector
        self.model_state = ModelState.READY
        self.sampler.set_detector(detector)
        logging.info("Detection model ready")
        return True

    def _model_failed(self, message: str) -> None:
        self.model_state = ModelState.FAILED
        self.model_error = message
        self.sampler.set_detector(None)
        self.sampler.disable()
        logging.error(f"Model load failed: {message}")

    async def reload_model(self) -> bool:
        """Retry loading after a failure."""
        if self._load_task is not None and not self._load_task.done():
            return await self._load_task
        return await self.load_model()

    def _schedule_model_load(self) -> None:
        if self.model_state != ModelState.NOT_LOADED:
            return
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.get_running_loop().create_task(self.load_model())

    # Stream lifecycle

    @property
    def is_streaming(self) -> bool:
        return self.source.is_open

    def list_devices(self) -> List[CaptureDevice]:
        return self.source.list_devices()

    async def start_stream(self, device_id: Optional[DeviceId] = None) -> None:
        """
        Acquire the camera.

        Raises:
            DeviceAccessError: If the device cannot be opened. The reason is
                kept in ``stream_error`` until the next successful start.
        """
        if device_id is None:
            device_id = self.selected_device
        try:
            await asyncio.to_thread(self.source.open, device_id)
        except DeviceAccessError as e:
            self.stream_error = str(e)
            logging.error(f"Camera access failed: {e}")
            raise
        self.stream_error = None
        self.selected_device = self.source.device_id
        logging.info(f"Stream started on device {self.selected_device}")

    async def stop_stream(self) -> None:
        """Stop detection and release the camera."""
        try:
            self.sampler.disable()
        finally:
            try:
                await asyncio.to_thread(self.source.close)
            finally:
                self._latest_frame = None
                self._latest_detections = []
        logging.info("Stream stopped")

    async def select_device(self, device_id: DeviceId) -> None:
        """
        Remember the device; a running stream switches to it immediately.

        Raises:
            DeviceAccessError: If a running stream cannot switch. The previous
                device stays selected and its stream is reopened.
        """
        if not self.is_streaming or self.source.device_id == device_id:
            self.selected_device = device_id
            return

        previous = self.source.device_id
        try:
            await self.start_stream(device_id)
        except DeviceAccessError as e:
            self.selected_device = previous
            if not self.is_streaming:
                try:
                    await self.start_stream(previous)
                except DeviceAccessError as reopen_error:
                    logging.error(f"Could not reopen camera {previous!r}: {reopen_error}")
            # keep the switch failure visible after the reopen
            self.stream_error = str(e)
            raise

    # Detection toggle and settings

    def enable_detection(self) -> None:
        """
        Turn sampling on; the model is loaded on first use.

        Raises:
            ModelLoadError: If the model failed to load and has not been reloaded.
        """
        if self.model_state == ModelState.FAILED:
            raise ModelLoadError(self.model_error or "Detection model failed to load")
        self.sampler.enable()
        self._schedule_model_load()

    def disable_detection(self) -> None:
        self.sampler.disable()

    def set_confidence_threshold(self, value: float) -> float:
        value = check_confidence_threshold(value)
        self.sampler.set_confidence_threshold(value)
        logging.info(f"Confidence threshold set to {value:.2f}")
        return value

    def set_interval(self, interval_ms: int) -> int:
        interval_ms = check_interval_ms(interval_ms)
        self.sampler.set_interval(interval_ms)
        logging.info(f"Detection interval set to {interval_ms}ms")
        return interval_ms

    def settings(self) -> Dict[str, Any]:
        cfg = self.sampler.config
        return {
            "confidence_threshold": cfg.confidence_threshold,
            "interval_ms": cfg.interval_ms,
            "detection_enabled": self.sampler.is_enabled,
            "device_id": self.selected_device,
        }

    # Results

    @property
    def current_detections(self):
        return self.sampler.current_detections

    def snapshot(self) -> AggregatorSnapshot:
        return self.aggregator.snapshot()

    def clear_logs(self) -> None:
        self.aggregator.reset()

    def export_document(self) -> Dict[str, Any]:
        return build_export(self.aggregator.snapshot())

    def export_to_file(self, directory: Optional[str] = None) -> str:
        return write_export(self.aggregator.snapshot(), directory or self.export_dir)

    def _on_sample(self, frame_data: FrameData, detections: List[Detection]) -> None:
        self._latest_frame = frame_data
        self._latest_detections = detections

    def annotated_frame(self) -> Optional[np.ndarray]:
        """Last sampled frame with the detections found in it drawn on top."""
        if self._latest_frame is None:
            return None
        return draw_detections(self._latest_frame.frame, self._latest_detections)

    def annotated_jpeg(self) -> Optional[bytes]:
        frame = self.annotated_frame()
        if frame is None:
            return None
        return encode_jpeg(frame)

    def status(self) -> Dict[str, Any]:
        return {
            "streaming": self.is_streaming,
            "device_id": self.source.device_id,
            "stream_error": self.stream_error,
            "model_state": self.model_state.value,
            "model_error": self.model_error,
            "sampler_state": self.sampler.state.value,
            "tick_policy": self.sampler.config.tick_policy.value,
            "inflight_ticks": self.sampler.inflight,
            "tick_errors": self.sampler.tick_errors,
            "skipped_ticks": self.sampler.skipped_ticks,
            "log_entries": len(self.aggregator.logs),
            "settings": self.settings(),
        }

    # Whole-engine lifecycle

    async def start(
        self,
        preload_model: bool = True,
        start_stream: bool = False,
        enable_detection: bool = False,
    ) -> None:
        """Bring the engine up; camera and model failures are recorded, not raised."""
        if start_stream:
            try:
                await self.start_stream()
            except DeviceAccessError:
                pass
        if preload_model:
            self._load_task = asyncio.get_running_loop().create_task(self.load_model())
        if enable_detection:
            try:
                self.enable_detection()
            except ModelLoadError as e:
                logging.error(f"Detection not enabled: {e}")

    async def shutdown(self) -> None:
        """Stop sampling, release the camera and drop the model, whatever fails."""
        try:
            await self.sampler.aclose()
            if self._load_task is not None and not self._load_task.done():
                self._load_task.cancel()
                await asyncio.gather(self._load_task, return_exceptions=True)
        finally:
            try:
                await asyncio.to_thread(self.source.close)
            finally:
                close = getattr(self._detector, "close", None)
                if callable(close):
                    close()
                self._detector = None
                self.sampler.set_detector(None)
                if self.model_state == ModelState.READY:
                    self.model_state = ModelState.NOT_LOADED
                logging.info("Detection engine stopped")

    @asynccontextmanager
    async def running(self, **start_kwargs) -> AsyncIterator["DetectionEngine"]:
        await self.start(**start_kwargs)
        try:
            yield self
        finally:
            await self.shutdown()


def _loaded_detector_factory(detection_cfg: Dict[str, Any]) -> DetectorFactory:
    def factory() -> Detector:
        detector = create_detector_from_config(detection_cfg)
        detector.load()
        return detector
    return factory


def create_engine_from_config(config: Dict[str, Any]) -> DetectionEngine:
    """
    Factory function to create a DetectionEngine from the config dict.

    Args:
        config: Full application config dict.
    """
    cfg = Config.from_dict(config)

    source = create_source_from_config(cfg.camera.to_dict(), source_id="main-camera")
    sampler_config = SamplerConfig(
        confidence_threshold=check_confidence_threshold(cfg.detection.confidence_threshold),
        interval_ms=check_interval_ms(cfg.detection.interval_ms),
        tick_policy=TickPolicy(cfg.detection.tick_policy),
    )
    engine = DetectionEngine(
        source,
        _loaded_detector_factory(cfg.detection.to_dict()),
        sampler_config=sampler_config,
        export_dir=cfg.export_dir,
    )
    engine.selected_device = cfg.camera.device_id
    return engine
