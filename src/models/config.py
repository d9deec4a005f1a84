"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# Adjustable ranges exposed to the presentation layer
THRESHOLD_MIN = 0.10
THRESHOLD_MAX = 0.90
THRESHOLD_STEP = 0.05
INTERVAL_MIN_MS = 50
INTERVAL_MAX_MS = 500
INTERVAL_STEP_MS = 50

DEFAULT_THRESHOLD = 0.60
DEFAULT_INTERVAL_MS = 150

TICK_POLICIES = ("overlap", "skip_if_busy")


def _on_grid(value: float, start: float, step: float) -> bool:
    steps = (value - start) / step
    return abs(steps - round(steps)) < 1e-6


def check_confidence_threshold(value: Any) -> float:
    """Return the threshold as float or raise ValueError if it is outside the UI range."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("confidence_threshold must be a number")
    value = float(value)
    if not (THRESHOLD_MIN - 1e-9 <= value <= THRESHOLD_MAX + 1e-9):
        raise ValueError(
            f"confidence_threshold must be between {THRESHOLD_MIN:.2f} and {THRESHOLD_MAX:.2f}"
        )
    if not _on_grid(value, THRESHOLD_MIN, THRESHOLD_STEP):
        raise ValueError(f"confidence_threshold must be a multiple of {THRESHOLD_STEP:.2f}")
    return round(value, 2)


def check_interval_ms(value: Any) -> int:
    """Return the interval as int or raise ValueError if it is outside the UI range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("interval_ms must be an integer")
    if not (INTERVAL_MIN_MS <= value <= INTERVAL_MAX_MS):
        raise ValueError(f"interval_ms must be between {INTERVAL_MIN_MS} and {INTERVAL_MAX_MS}")
    if value % INTERVAL_STEP_MS != 0:
        raise ValueError(f"interval_ms must be a multiple of {INTERVAL_STEP_MS}")
    return value


@dataclass
class CameraConfig:
    """Camera configuration."""
    backend: str = "opencv"
    device_id: Union[int, str] = 0
    resolution: List[int] = field(default_factory=lambda: [640, 480])
    fps: int = 30
    buffer_size: int = 1
    max_probe_devices: int = 5
    rotate: int = 0
    flip_horizontal: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            backend=d.get("backend", "opencv"),
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution", [640, 480]),
            fps=d.get("fps", 30),
            buffer_size=d.get("buffer_size", 1),
            max_probe_devices=d.get("max_probe_devices", 5),
            rotate=d.get("rotate", 0) or 0,
            flip_horizontal=d.get("flip_horizontal", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "buffer_size": self.buffer_size,
            "max_probe_devices": self.max_probe_devices,
            "rotate": self.rotate,
            "flip_horizontal": self.flip_horizontal,
        }


@dataclass
class YoloConfig:
    """YOLO detector configuration."""
    model: str = "yolov8n.pt"
    iou_threshold: float = 0.45
    min_score: float = THRESHOLD_MIN
    device: str = "cpu"
    classes: Optional[List[int]] = None
    class_name_overrides: Optional[Dict[int, str]] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "YoloConfig":
        return cls(
            model=d.get("model", "yolov8n.pt"),
            iou_threshold=d.get("iou_threshold", 0.45),
            min_score=d.get("min_score", THRESHOLD_MIN),
            device=d.get("device", "cpu"),
            classes=d.get("classes"),
            class_name_overrides=d.get("class_name_overrides"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "model": self.model,
            "iou_threshold": self.iou_threshold,
            "min_score": self.min_score,
            "device": self.device,
        }
        if self.classes is not None:
            d["classes"] = self.classes
        if self.class_name_overrides is not None:
            d["class_name_overrides"] = self.class_name_overrides
        return d


@dataclass
class DetectionConfig:
    """Detection sampling configuration."""
    backend: str = "yolo"
    enabled: bool = False
    confidence_threshold: float = DEFAULT_THRESHOLD
    interval_ms: int = DEFAULT_INTERVAL_MS
    tick_policy: str = "overlap"
    preload_model: bool = True
    yolo: YoloConfig = field(default_factory=YoloConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionConfig":
        return cls(
            backend=d.get("backend", "yolo"),
            enabled=d.get("enabled", False),
            confidence_threshold=d.get("confidence_threshold", DEFAULT_THRESHOLD),
            interval_ms=d.get("interval_ms", DEFAULT_INTERVAL_MS),
            tick_policy=d.get("tick_policy", "overlap"),
            preload_model=d.get("preload_model", True),
            yolo=YoloConfig.from_dict(d.get("yolo") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "enabled": self.enabled,
            "confidence_threshold": self.confidence_threshold,
            "interval_ms": self.interval_ms,
            "tick_policy": self.tick_policy,
            "preload_model": self.preload_model,
            "yolo": self.yolo.to_dict(),
        }


@dataclass
class WebConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 5000
    stream_fps: int = 10
    cors_origins: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WebConfig":
        return cls(
            host=d.get("host", "0.0.0.0"),
            port=d.get("port", 5000),
            stream_fps=d.get("stream_fps", 10),
            cors_origins=d.get("cors_origins", []) or [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "stream_fps": self.stream_fps,
            "cors_origins": self.cors_origins,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    web: WebConfig = field(default_factory=WebConfig)
    export_dir: str = "exports"
    log_path: str = "logs/live_detection.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            camera=CameraConfig.from_dict(d.get("camera", {}) or {}),
            detection=DetectionConfig.from_dict(d.get("detection", {}) or {}),
            web=WebConfig.from_dict(d.get("web", {}) or {}),
            export_dir=d.get("export_dir", "exports"),
            log_path=d.get("log_path", "logs/live_detection.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or passing to existing code)."""
        return {
            "camera": self.camera.to_dict(),
            "detection": self.detection.to_dict(),
            "web": self.web.to_dict(),
            "export_dir": self.export_dir,
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
