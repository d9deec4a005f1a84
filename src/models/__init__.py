"""
Typed models for the live detection monitor.

These models provide strong typing for detections, the detection log,
running statistics and configuration. Use the adapter functions to convert
from detector output and config dicts.
"""

from .category import Category, classify
from .frame import FrameData
from .detection import Detection, BoundingBox
from .log import DetectionLogEntry
from .stats import DetectionStats
from .config import (
    Config,
    CameraConfig,
    DetectionConfig,
    YoloConfig,
    WebConfig,
)

__all__ = [
    # Category
    "Category",
    "classify",
    # Frame
    "FrameData",
    # Detection
    "Detection",
    "BoundingBox",
    "DetectionLogEntry",
    "DetectionStats",
    # Config
    "Config",
    "CameraConfig",
    "DetectionConfig",
    "YoloConfig",
    "WebConfig",
]
