from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Deque, Optional, Sequence, Tuple

from models.category import Category
from models.detection import Detection
from models.log import DetectionLogEntry
from models.stats import DetectionStats

LOG_CAPACITY = 100
FPS_WINDOW_SECONDS = 1.0


@dataclass(frozen=True)
class AggregatorSnapshot:
    logs: Tuple[DetectionLogEntry, ...]
    stats: DetectionStats


class DetectionAggregator:
    """
    Bounded newest-first detection log plus running statistics.

    All mutation happens synchronously, so an update is never observed half
    applied by other coroutines on the same event loop.
    """

    def __init__(self, capacity: int = LOG_CAPACITY, clock: Callable[[], float] = time.monotonic):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._clock = clock
        # appendleft keeps newest first; maxlen evicts from the tail
        self._log: Deque[DetectionLogEntry] = deque(maxlen=capacity)
        self._stats = DetectionStats()
        self._frame_seq = 0
        self._sample_count = 0
        self._last_fps_time = clock()

    @property
    def capacity(self) -> int:
        return self._log.maxlen

    @property
    def frame_seq(self) -> int:
        return self._frame_seq

    @property
    def logs(self) -> Tuple[DetectionLogEntry, ...]:
        return tuple(self._log)

    @property
    def stats(self) -> DetectionStats:
        return replace(self._stats)

    def record_sample(self) -> None:
        """Count one completed sampling call and roll the fps window when due."""
        self._sample_count += 1
        now = self._clock()
        if now - self._last_fps_time >= FPS_WINDOW_SECONDS:
            self._stats.fps = self._sample_count
            self._sample_count = 0
            self._last_fps_time = now

    def ingest(self, batch: Sequence[Detection], frame_number: Optional[int] = None) -> Optional[DetectionLogEntry]:
        """
        Log a non-empty batch and fold it into the statistics.

        Args:
            batch: Confidence-filtered detections of one sampling tick.
            frame_number: Explicit frame sequence number; by default the next
                number of the internal sequence is used.

        Returns:
            The new log entry, or None for an empty batch.
        """
        if not batch:
            return None

        if frame_number is None:
            self._frame_seq += 1
            frame_number = self._frame_seq
        else:
            self._frame_seq = max(self._frame_seq, frame_number)

        entry = DetectionLogEntry(frame_number=frame_number, detections=tuple(batch))
        self._log.appendleft(entry)

        stats = self._stats
        stats.total_detections += len(batch)
        for category, n in entry.count_by_category().items():
            if n:
                stats.add_category(category, n)
        stats.avg_confidence = sum(d.confidence for d in batch) / len(batch) * 100
        return entry

    def reset(self) -> None:
        """Clear the log and zero all statistics; sampling is unaffected."""
        self._log.clear()
        self._stats = DetectionStats()
        self._frame_seq = 0
        logging.info("Detection log and statistics cleared")

    def snapshot(self) -> AggregatorSnapshot:
        return AggregatorSnapshot(logs=self.logs, stats=self.stats)

    def count_for(self, category: Category) -> int:
        return self._stats.count_for(category)
