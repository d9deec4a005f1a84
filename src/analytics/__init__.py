"""
Detection analytics: the bounded detection log, running statistics and
the JSON export built from them.
"""

from .aggregator import AggregatorSnapshot, DetectionAggregator, FPS_WINDOW_SECONDS, LOG_CAPACITY
from .export import build_export, export_filename, write_export

__all__ = [
    "AggregatorSnapshot",
    "DetectionAggregator",
    "FPS_WINDOW_SECONDS",
    "LOG_CAPACITY",
    "build_export",
    "export_filename",
    "write_export",
]
