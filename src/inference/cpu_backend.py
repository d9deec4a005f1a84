"""
CPU inference backend.

Wraps an Ultralytics YOLO model trained on COCO, whose class names line up
with the person/vehicle/animal label lists. Inference is synchronous, so
``detect`` hands it to a worker thread and the event loop keeps running.
The Ultralytics predictor is not thread-safe; overlapping calls queue on
``predict_lock``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .backend import Detector, ModelLoadError, RawDetection


@dataclass(frozen=True)
class CpuYoloConfig:
    model: str
    iou_threshold: float = 0.45
    min_score: float = 0.10
    device: str = "cpu"
    classes: Optional[Sequence[int]] = None
    class_name_overrides: Optional[Dict[int, str]] = None


class UltralyticsCpuBackend(Detector):
    def __init__(self, cfg: CpuYoloConfig):
        self.cfg = cfg
        self._model = None
        self.predict_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        """Load model weights; raises ModelLoadError on any failure."""
        try:
            from ultralytics import YOLO  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ModelLoadError(
                "Ultralytics is not installed. Install with `pip install ultralytics`."
            ) from e

        try:
            self._model = YOLO(self.cfg.model)
        except Exception as e:
            raise ModelLoadError(f"Failed to load model {self.cfg.model}: {e}") from e
        logging.info(f"YOLO model loaded: {self.cfg.model} (device={self.cfg.device})")

    def close(self) -> None:
        self._model = None

    async def detect(self, frame: np.ndarray) -> List[RawDetection]:
        return await asyncio.to_thread(self.detect_sync, frame)

    def detect_sync(self, frame: np.ndarray) -> List[RawDetection]:
        if self._model is None:
            raise RuntimeError("Model is not loaded")

        with self.predict_lock:
            results = self._model.predict(
                source=frame,
                conf=self.cfg.min_score,
                iou=self.cfg.iou_threshold,
                classes=list(self.cfg.classes) if self.cfg.classes is not None else None,
                device=self.cfg.device,
                verbose=False,
            )
        if not results:
            return []

        r0 = results[0]
        names = getattr(r0, "names", None) or {}
        boxes = getattr(r0, "boxes", None)
        if boxes is None:
            return []

        xyxy = boxes.xyxy.cpu().numpy() if hasattr(boxes.xyxy, "cpu") else np.asarray(boxes.xyxy)
        conf = boxes.conf.cpu().numpy() if hasattr(boxes.conf, "cpu") else np.asarray(boxes.conf)
        cls = boxes.cls.cpu().numpy() if hasattr(boxes.cls, "cpu") else np.asarray(boxes.cls)

        out: List[RawDetection] = []
        for (x1, y1, x2, y2), c, k in zip(xyxy, conf, cls):
            x1 = max(0.0, float(x1))
            y1 = max(0.0, float(y1))
            w = float(x2) - x1
            h = float(y2) - y1
            if w <= 0 or h <= 0:
                continue
            class_id = int(k)
            label = (
                (self.cfg.class_name_overrides or {}).get(class_id)
                or names.get(class_id)
                or str(class_id)
            )
            out.append(RawDetection(label=label, score=float(c), bbox=(x1, y1, w, h)))

        return out
