"""
Pipeline module for the live detection monitor.

The pipeline drives the full processing flow:
- Frame sampling from the capture source on a fixed timer
- Detection and confidence filtering
- Logging and statistics (via DetectionAggregator)
- Overlay rendering for the presentation layer
"""

from .engine import DetectionEngine, ModelState, create_engine_from_config
from .sampler import DetectionSampler, SamplerConfig, SamplerState, TickPolicy, filter_by_confidence

__all__ = [
    "DetectionEngine",
    "ModelState",
    "create_engine_from_config",
    "DetectionSampler",
    "SamplerConfig",
    "SamplerState",
    "TickPolicy",
    "filter_by_confidence",
]
