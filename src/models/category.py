"""
Category classification for detector labels.

Labels come from the detector's vocabulary (COCO class names). Matching is
exact and case-sensitive; anything outside the person/vehicle/animal lists
is an ``object``.
"""

from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    """Coarse category of a detected object."""
    PERSON = "person"
    VEHICLE = "vehicle"
    ANIMAL = "animal"
    OBJECT = "object"


PERSON_LABELS = frozenset({"person"})

VEHICLE_LABELS = frozenset({
    "car",
    "truck",
    "bus",
    "motorcycle",
    "bicycle",
    "airplane",
    "boat",
    "train",
})

ANIMAL_LABELS = frozenset({
    "bird",
    "cat",
    "dog",
    "horse",
    "sheep",
    "cow",
    "elephant",
    "bear",
    "zebra",
    "giraffe",
})


def classify(label: str) -> Category:
    """Map a raw detector label to its category."""
    if label in PERSON_LABELS:
        return Category.PERSON
    if label in VEHICLE_LABELS:
        return Category.VEHICLE
    if label in ANIMAL_LABELS:
        return Category.ANIMAL
    return Category.OBJECT
