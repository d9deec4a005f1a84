"""
OpenCV-based capture source.

Supports:
- USB webcams (device_id as int, e.g., 0)
- IP cameras and video files (device_id as str URL or path)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from models.frame import FrameData
from .base import CaptureDevice, DeviceAccessError, DeviceId, ObservationConfig, ObservationSource


@dataclass
class OpenCVSourceConfig(ObservationConfig):
    """
    Configuration for OpenCV-based capture sources.

    Attributes:
        device_id: Default camera index (int), URL or file path (str).
        buffer_size: OpenCV capture buffer size (1 keeps the freshest frame).
        max_probe_devices: Number of camera indices probed by list_devices().
        rotate: Rotation in degrees (0, 90, 180, 270).
        flip_horizontal: Mirror the frame.
    """
    device_id: DeviceId = 0
    buffer_size: int = 1
    max_probe_devices: int = 5
    rotate: int = 0
    flip_horizontal: bool = False

    @classmethod
    def from_camera_config(cls, camera_cfg: Dict[str, Any], source_id: str = "camera") -> "OpenCVSourceConfig":
        """
        Adapter: Create OpenCVSourceConfig from the camera config dict.

        Args:
            camera_cfg: Camera configuration dict (from config.yaml).
            source_id: Identifier for this source.
        """
        resolution = camera_cfg.get("resolution")
        if resolution:
            resolution = tuple(resolution)

        return cls(
            source_id=source_id,
            resolution=resolution,
            fps=camera_cfg.get("fps"),
            device_id=camera_cfg.get("device_id", 0),
            buffer_size=camera_cfg.get("buffer_size", 1),
            max_probe_devices=camera_cfg.get("max_probe_devices", 5),
            rotate=camera_cfg.get("rotate", 0) or 0,
            flip_horizontal=camera_cfg.get("flip_horizontal", False),
        )


class OpenCVSource(ObservationSource):
    """
    Capture source wrapping cv2.VideoCapture.

    Example:
        source = OpenCVSource(OpenCVSourceConfig(device_id=0, resolution=(640, 480)))
        source.open()
        try:
            frame_data = source.read()
        finally:
            source.close()
    """

    def __init__(self, config: OpenCVSourceConfig):
        super().__init__(config)
        self._opencv_config = config
        self._cap: Optional[cv2.VideoCapture] = None
        self._last_read_ok = False
        # read/open/close run in worker threads
        self._cap_lock = threading.Lock()

    @property
    def is_frame_ready(self) -> bool:
        return self._is_open and self._cap is not None and self._cap.isOpened()

    def list_devices(self) -> List[CaptureDevice]:
        """Probe camera indices and return the ones that open."""
        devices: List[CaptureDevice] = []
        for index in range(self._opencv_config.max_probe_devices):
            if self._is_open and self._device_id == index:
                devices.append(CaptureDevice(device_id=index, label=f"Camera {index}"))
                continue
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    devices.append(CaptureDevice(device_id=index, label=f"Camera {index}"))
            finally:
                cap.release()

        configured = self._opencv_config.device_id
        if isinstance(configured, str):
            devices.append(CaptureDevice(device_id=configured, label=configured))
        logging.debug(f"Capture devices found: {[d.device_id for d in devices]}")
        return devices

    def open(self, device_id: Optional[DeviceId] = None) -> None:
        """Open the capture device, replacing any device already open."""
        with self._cap_lock:
            if self._is_open:
                self._release()

            target = self._opencv_config.device_id if device_id is None else device_id
            cap = cv2.VideoCapture(target)
            if not cap.isOpened():
                cap.release()
                raise DeviceAccessError(
                    f"Could not open camera {target!r}: the device is missing, busy, "
                    "or permission was denied"
                )

            if isinstance(target, int) and self._opencv_config.resolution:
                w, h = self._opencv_config.resolution
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
                if self._opencv_config.fps:
                    cap.set(cv2.CAP_PROP_FPS, self._opencv_config.fps)
                cap.set(cv2.CAP_PROP_BUFFERSIZE, self._opencv_config.buffer_size)

            self._cap = cap
            self._device_id = target
            self._is_open = True
            self._frame_index = 0
            self._last_read_ok = False

        logging.info(
            f"OpenCVSource opened: source_id={self.source_id}, device={target}, "
            f"resolution=({cap.get(cv2.CAP_PROP_FRAME_WIDTH)}x{cap.get(cv2.CAP_PROP_FRAME_HEIGHT)})"
        )

    def read(self) -> Optional[FrameData]:
        """Read the freshest frame from the device."""
        with self._cap_lock:
            if not self.is_frame_ready:
                return None

            ret, frame = self._cap.read()
            if not ret or frame is None:
                if self._last_read_ok:
                    logging.warning(f"Failed to read frame from device {self._device_id}")
                self._last_read_ok = False
                return None

            self._last_read_ok = True
            self._frame_index += 1
            frame_index = self._frame_index
            device_id = self._device_id

        frame = self._apply_transforms(frame)
        return FrameData.from_numpy(
            frame,
            timestamp=time.time(),
            frame_index=frame_index,
            device_id=device_id,
        )

    def _apply_transforms(self, frame: np.ndarray) -> np.ndarray:
        """Apply configured rotation and mirroring."""
        cfg = self._opencv_config

        if cfg.rotate == 90:
            frame = cv2.rotate(frame, cv2.ROTATE_90_CLOCKWISE)
        elif cfg.rotate == 180:
            frame = cv2.rotate(frame, cv2.ROTATE_180)
        elif cfg.rotate == 270:
            frame = cv2.rotate(frame, cv2.ROTATE_90_COUNTERCLOCKWISE)

        if cfg.flip_horizontal:
            frame = cv2.flip(frame, 1)

        return frame

    def close(self) -> None:
        """Release the device."""
        with self._cap_lock:
            self._release()

    def _release(self) -> None:
        was_open = self._is_open
        try:
            if self._cap is not None:
                self._cap.release()
        finally:
            self._cap = None
            self._is_open = False
            self._last_read_ok = False
        if was_open:
            logging.info(f"OpenCVSource closed: source_id={self.source_id}, device={self._device_id}")
