"""
Detector interface.

Detectors return pixel-space detections in the original frame coordinate
system, with boxes as [x, y, width, height]. Calls are asynchronous and may
overlap; a failed call raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Tuple

import numpy as np


class ModelLoadError(RuntimeError):
    """The detector could not be initialised."""


class DetectionTickError(RuntimeError):
    """A single detector invocation failed."""


@dataclass(frozen=True)
class RawDetection:
    label: str
    score: float
    bbox: Tuple[float, float, float, float]


class Detector(Protocol):
    async def detect(self, frame: np.ndarray) -> List[RawDetection]:
        ...
