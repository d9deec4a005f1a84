"""
Bounding box overlay drawing.
"""

from __future__ import annotations

from typing import Dict, Sequence, Tuple

import cv2
import numpy as np

from models.category import Category
from models.detection import Detection

# BGR
CATEGORY_COLORS: Dict[Category, Tuple[int, int, int]] = {
    Category.PERSON: (207, 224, 62),
    Category.VEHICLE: (10, 159, 245),
    Category.ANIMAL: (104, 217, 38),
    Category.OBJECT: (224, 82, 177),
}


def detection_label(det: Detection) -> str:
    return f"{det.label} {det.confidence_pct}%"


def _draw_corners(frame: np.ndarray, x1: int, y1: int, x2: int, y2: int, color, length: int) -> None:
    for (cx, cy, dx, dy) in ((x1, y1, 1, 1), (x2, y1, -1, 1), (x1, y2, 1, -1), (x2, y2, -1, -1)):
        cv2.line(frame, (cx, cy), (cx + dx * length, cy), color, 3)
        cv2.line(frame, (cx, cy), (cx, cy + dy * length), color, 3)


def draw_detections(frame: np.ndarray, detections: Sequence[Detection]) -> np.ndarray:
    """Return a copy of frame with a box, corner brackets and a label per detection."""
    out = frame.copy()
    font = cv2.FONT_HERSHEY_SIMPLEX

    for det in detections:
        x1, y1, x2, y2 = det.bbox.as_int_xyxy()
        color = CATEGORY_COLORS[det.category]

        cv2.rectangle(out, (x1, y1), (x2, y2), color, 1)
        corner = max(1, min(15, (x2 - x1) // 4, (y2 - y1) // 4))
        _draw_corners(out, x1, y1, x2, y2, color, corner)

        # Label with background, kept inside the frame when the box touches the top
        label = detection_label(det)
        (tw, th), _ = cv2.getTextSize(label, font, 0.5, 1)
        top = y1 - th - 6 if y1 - th - 6 >= 0 else y1
        cv2.rectangle(out, (x1, top), (x1 + tw + 4, top + th + 6), color, -1)
        cv2.putText(out, label, (x1 + 2, top + th + 2), font, 0.5, (0, 0, 0), 1)

    return out


def encode_jpeg(frame: np.ndarray, quality: int = 80) -> bytes:
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise RuntimeError("Failed to encode JPEG")
    return buf.tobytes()
