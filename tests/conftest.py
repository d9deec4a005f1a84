"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
import sys
import time
from typing import List, Optional

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from inference.backend import ModelLoadError, RawDetection  # noqa: E402
from models.frame import FrameData  # noqa: E402
from observation.base import (  # noqa: E402
    CaptureDevice,
    DeviceAccessError,
    ObservationConfig,
    ObservationSource,
)


class FakeSource(ObservationSource):
    """In-memory capture source returning black frames."""

    def __init__(self, devices=(0, 1), fail_open: bool = False, width: int = 640, height: int = 480):
        super().__init__(ObservationConfig(source_id="fake-camera"))
        self.devices = list(devices)
        self.fail_open = fail_open
        self.width = width
        self.height = height
        self.open_calls = 0
        self.close_calls = 0

    def list_devices(self) -> List[CaptureDevice]:
        return [CaptureDevice(device_id=d, label=f"Camera {d}") for d in self.devices]

    def open(self, device_id=None) -> None:
        self.open_calls += 1
        self.close()
        target = self.devices[0] if device_id is None else device_id
        if self.fail_open or target not in self.devices:
            raise DeviceAccessError(f"Could not open camera {target!r}: permission denied")
        self._device_id = target
        self._is_open = True
        self._frame_index = 0

    def read(self) -> Optional[FrameData]:
        if not self._is_open:
            return None
        self._frame_index += 1
        frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        return FrameData.from_numpy(frame, timestamp=time.time(), frame_index=self._frame_index,
                                    device_id=self._device_id)

    def close(self) -> None:
        if self._is_open:
            self.close_calls += 1
        self._is_open = False


class FakeDetector:
    """
    Scripted detector.

    Each call pops the next batch from ``batches`` (repeating the last one);
    an Exception instance in the script is raised instead. When ``gate`` is
    set, calls block until it is released.
    """

    def __init__(self, batches=None, gate: Optional[asyncio.Event] = None):
        self.batches = list(batches or [[]])
        self.gate = gate
        self.calls = 0
        self.closed = False

    async def detect(self, frame) -> List[RawDetection]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        batch = self.batches.pop(0) if len(self.batches) > 1 else self.batches[0]
        if isinstance(batch, Exception):
            raise batch
        return list(batch)

    def close(self) -> None:
        self.closed = True


def raw(label: str, score: float, bbox=(10.0, 20.0, 100.0, 50.0)) -> RawDetection:
    return RawDetection(label=label, score=score, bbox=bbox)


def detector_factory(detector):
    def factory():
        return detector
    return factory


def failing_factory(message: str = "weights not found"):
    def factory():
        raise ModelLoadError(message)
    return factory


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
camera:
  backend: "opencv"
  device_id: 0
  resolution: [640, 480]
  fps: 30

detection:
  backend: "yolo"
  confidence_threshold: 0.6
  interval_ms: 150
  tick_policy: "overlap"
  yolo:
    model: "yolov8n.pt"

web:
  host: "0.0.0.0"
  port: 5000

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "camera": {
            "backend": "opencv",
            "device_id": 0,
            "resolution": [1280, 720],
            "fps": 30,
        },
        "detection": {
            "backend": "yolo",
            "confidence_threshold": 0.6,
            "interval_ms": 150,
            "tick_policy": "overlap",
            "yolo": {"model": "yolov8n.pt", "iou_threshold": 0.45},
        },
        "web": {"host": "127.0.0.1", "port": 5000},
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
