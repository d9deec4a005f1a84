"""
Detection models for object detection results.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from .category import Category, classify


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a fresh identifier; identifiers are never reused."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in pixel coordinates of the source frame.

    Attributes:
        x: Left edge x coordinate.
        y: Top edge y coordinate.
        width: Box width (> 0).
        height: Box height (> 0).
    """
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Bounding box must have positive size, got {self.width}x{self.height}")
        if self.x < 0 or self.y < 0:
            raise ValueError(f"Bounding box origin must be non-negative, got ({self.x}, {self.y})")

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_list(self) -> List[float]:
        """Return as [x, y, width, height]."""
        return [self.x, self.y, self.width, self.height]

    def as_int_xyxy(self) -> Tuple[int, int, int, int]:
        """Return integer corner coordinates (x1, y1, x2, y2) for drawing."""
        return (int(self.x), int(self.y), int(self.x2), int(self.y2))

    @classmethod
    def from_sequence(cls, bbox: Sequence[float]) -> "BoundingBox":
        """Create from an (x, y, width, height) sequence."""
        x, y, w, h = bbox
        return cls(x=float(x), y=float(y), width=float(w), height=float(h))

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        """Create from corner coordinates, clamping the origin to the frame."""
        x1 = max(0.0, float(x1))
        y1 = max(0.0, float(y1))
        return cls(x=x1, y=y1, width=float(x2) - x1, height=float(y2) - y1)


@dataclass(frozen=True)
class Detection:
    """
    One observed object instance in one sampled frame.

    The category is derived from the label on every access and cannot be
    set independently.

    Attributes:
        label: Class name from the detector vocabulary.
        confidence: Detection score (0-1).
        bbox: Bounding box in source-frame pixels.
        observed_at: UTC timestamp of the capture.
        id: Unique identifier of this instance.
    """
    label: str
    confidence: float
    bbox: BoundingBox
    observed_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=new_id)

    @property
    def category(self) -> Category:
        return classify(self.label)

    @property
    def confidence_pct(self) -> int:
        """Confidence as a whole percentage, rounded half up."""
        return int(self.confidence * 100 + 0.5)

    @classmethod
    def from_raw(cls, raw, observed_at: Optional[datetime] = None) -> "Detection":
        """
        Adapter: Convert a detector result (label, score, bbox) to a Detection.

        Args:
            raw: An inference.backend.RawDetection or anything with the same fields.
            observed_at: Capture timestamp; defaults to now.
        """
        return cls(
            label=raw.label,
            confidence=float(raw.score),
            bbox=BoundingBox.from_sequence(raw.bbox),
            observed_at=observed_at or utc_now(),
        )
