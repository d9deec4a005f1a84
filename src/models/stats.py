"""
Running detection statistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .category import Category


@dataclass
class DetectionStats:
    """
    Aggregate counters since the last reset.

    Attributes:
        total_detections: Detections logged since reset.
        person_count: Detections in the person category.
        vehicle_count: Detections in the vehicle category.
        animal_count: Detections in the animal category.
        object_count: Detections in the object category.
        fps: Sampler invocations completed in the last one-second window.
        avg_confidence: Mean confidence of the latest non-empty batch (0-100).
    """
    total_detections: int = 0
    person_count: int = 0
    vehicle_count: int = 0
    animal_count: int = 0
    object_count: int = 0
    fps: int = 0
    avg_confidence: float = 0.0

    def add_category(self, category: Category, n: int = 1) -> None:
        attr = f"{category.value}_count"
        setattr(self, attr, getattr(self, attr) + n)

    def count_for(self, category: Category) -> int:
        return getattr(self, f"{category.value}_count")

    @property
    def category_total(self) -> int:
        return self.person_count + self.vehicle_count + self.animal_count + self.object_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase shape used by the export document."""
        return {
            "totalDetections": self.total_detections,
            "personCount": self.person_count,
            "vehicleCount": self.vehicle_count,
            "animalCount": self.animal_count,
            "objectCount": self.object_count,
            "fps": self.fps,
            "avgConfidence": self.avg_confidence,
        }
