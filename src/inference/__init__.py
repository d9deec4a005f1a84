"""
Inference backends.

The detector is an injected capability; the sampler only depends on the
``Detector`` protocol so it can run against a scripted fake in tests.
"""

from typing import Any, Dict

from .backend import Detector, DetectionTickError, ModelLoadError, RawDetection
from .cpu_backend import CpuYoloConfig, UltralyticsCpuBackend


def create_detector_from_config(detection_cfg: Dict[str, Any]) -> UltralyticsCpuBackend:
    """Build (but do not load) the detector selected by detection.backend."""
    backend = detection_cfg.get("backend", "yolo")
    if backend != "yolo":
        raise ValueError(f"Unknown detection backend: {backend}")
    ycfg = detection_cfg.get("yolo", {}) or {}
    return UltralyticsCpuBackend(
        CpuYoloConfig(
            model=ycfg.get("model", "yolov8n.pt"),
            iou_threshold=float(ycfg.get("iou_threshold", 0.45)),
            min_score=float(ycfg.get("min_score", 0.10)),
            device=ycfg.get("device", "cpu"),
            classes=ycfg.get("classes"),
            class_name_overrides=ycfg.get("class_name_overrides"),
        )
    )


__all__ = [
    "Detector",
    "DetectionTickError",
    "ModelLoadError",
    "RawDetection",
    "CpuYoloConfig",
    "UltralyticsCpuBackend",
    "create_detector_from_config",
]
