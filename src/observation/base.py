"""
ObservationSource interface for live capture sources.

This defines the contract that capture sources must implement so the
detection sampler can pull the freshest frame on demand:
- enumerate available devices
- open a device (or the default one) and report a readable reason on failure
- report whether a frame is ready to read
- release the device on close
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from models.frame import FrameData

DeviceId = Union[int, str]


class DeviceAccessError(RuntimeError):
    """The capture device is unavailable or access was denied."""


@dataclass(frozen=True)
class CaptureDevice:
    """An enumerable capture device."""
    device_id: DeviceId
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"device_id": self.device_id, "label": self.label}


@dataclass
class ObservationConfig:
    """
    Base configuration for observation sources.

    Attributes:
        source_id: Identifier for this source in logs (e.g., "main-camera").
        resolution: Target resolution as (width, height). None = use device default.
        fps: Target frames per second. None = use device default.
        metadata: Additional source-specific configuration.
    """
    source_id: str = "default"
    resolution: Optional[tuple[int, int]] = None
    fps: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ObservationSource(ABC):
    """
    Abstract base class for live capture sources.

    Lifecycle:
        1. Create instance with config
        2. Call open(device_id) to acquire the device
        3. Call read() whenever a frame is needed
        4. Call close() to release the device

    Can also be used as a context manager so the device is released even
    when the caller fails:
        with OpenCVSource(config) as source:
            frame_data = source.read()
    """

    def __init__(self, config: ObservationConfig):
        self._config = config
        self._is_open = False
        self._frame_index = 0
        self._device_id: Optional[DeviceId] = None

    @property
    def source_id(self) -> str:
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        """Whether a device is currently acquired."""
        return self._is_open

    @property
    def device_id(self) -> Optional[DeviceId]:
        """Device currently streaming, None when closed."""
        return self._device_id if self._is_open else None

    @property
    def frame_index(self) -> int:
        """Number of frames read since open."""
        return self._frame_index

    @property
    def is_frame_ready(self) -> bool:
        """Whether read() can be expected to return a decodable frame."""
        return self._is_open

    @abstractmethod
    def list_devices(self) -> List[CaptureDevice]:
        """Return the capture devices that can currently be opened."""

    @abstractmethod
    def open(self, device_id: Optional[DeviceId] = None) -> None:
        """
        Acquire a capture device, releasing any device already held.

        Args:
            device_id: Device to open; None selects the configured default.

        Raises:
            DeviceAccessError: If the device cannot be opened.
        """

    @abstractmethod
    def read(self) -> Optional[FrameData]:
        """
        Read the freshest frame.

        Returns:
            FrameData, or None if no frame is available.
        """

    @abstractmethod
    def close(self) -> None:
        """
        Release the capture device.

        Safe to call multiple times.
        """

    def __enter__(self) -> "ObservationSource":
        if not self._is_open:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
