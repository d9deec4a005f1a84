"""
Observation layer for live capture sources.

This layer abstracts where frames come from (USB camera, IP stream, video
file) from the detection sampler. Each source implements the
ObservationSource interface and returns FrameData objects.
"""

from typing import Any, Dict

from .base import CaptureDevice, DeviceAccessError, ObservationSource, ObservationConfig
from .opencv_source import OpenCVSource, OpenCVSourceConfig


def create_source_from_config(camera_cfg: Dict[str, Any], source_id: str = "main-camera") -> ObservationSource:
    """Build the capture source selected by camera.backend."""
    backend = camera_cfg.get("backend", "opencv")
    if backend != "opencv":
        raise ValueError(f"Unknown camera backend: {backend}")
    return OpenCVSource(OpenCVSourceConfig.from_camera_config(camera_cfg, source_id=source_id))


__all__ = [
    "CaptureDevice",
    "DeviceAccessError",
    "ObservationSource",
    "ObservationConfig",
    "OpenCVSource",
    "OpenCVSourceConfig",
    "create_source_from_config",
]
