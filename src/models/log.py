"""
Detection log entry model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Tuple

from .category import Category
from .detection import Detection, new_id, utc_now


@dataclass(frozen=True)
class DetectionLogEntry:
    """
    One sampling event that produced at least one detection.

    Attributes:
        frame_number: Sequence number of the logged frame since the last reset.
        detections: Confidence-filtered detections in detector output order.
        timestamp: UTC time the entry was created.
        id: Unique identifier of the entry.
    """
    frame_number: int
    detections: Tuple[Detection, ...]
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=new_id)

    def __len__(self) -> int:
        return len(self.detections)

    def count_by_category(self) -> Dict[Category, int]:
        counts = {category: 0 for category in Category}
        for det in self.detections:
            counts[det.category] += 1
        return counts
