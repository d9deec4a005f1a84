"""
Detection sampler.

Bridges a pull-based capture source and the detector with a fixed-period
asyncio timer. Each firing reads the freshest frame in a worker thread, awaits
the detector, filters by confidence and publishes the result as the current
detections. Malformed boxes are logged and dropped. Non-empty results are
forwarded to the aggregator.

States:
    idle           detection disabled, no timer running
    waiting_model  enabled, detector not loaded yet; ticks are no-ops
    sampling       enabled with a detector; ticks run detection

Disabling cancels the timer at once. A detector call already in flight
cannot be recalled, so every tick captures the session token at dispatch
and publishes only if that token is still current when the call returns.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set, Tuple

from analytics.aggregator import DetectionAggregator
from inference.backend import DetectionTickError, Detector, RawDetection
from models.config import DEFAULT_INTERVAL_MS, DEFAULT_THRESHOLD
from models.detection import Detection
from models.frame import FrameData
from observation.base import ObservationSource

SampleCallback = Callable[[FrameData, List[Detection]], None]


class SamplerState(str, Enum):
    IDLE = "idle"
    WAITING_MODEL = "waiting_model"
    SAMPLING = "sampling"


class TickPolicy(str, Enum):
    """
    What happens when the timer fires while a detector call is still running.

    OVERLAP starts another tick anyway; results publish in completion order
    and the last one wins. SKIP_IF_BUSY drops the firing.
    """
    OVERLAP = "overlap"
    SKIP_IF_BUSY = "skip_if_busy"


@dataclass
class SamplerConfig:
    """
    Attributes:
        confidence_threshold: Minimum detector score kept (inclusive).
        interval_ms: Timer period in milliseconds.
        tick_policy: Behaviour when a firing finds a tick still in flight.
    """
    confidence_threshold: float = DEFAULT_THRESHOLD
    interval_ms: int = DEFAULT_INTERVAL_MS
    tick_policy: TickPolicy = TickPolicy.OVERLAP


def filter_by_confidence(raw: Sequence[RawDetection], threshold: float) -> List[RawDetection]:
    """Keep detections scoring at or above threshold, in their original order."""
    return [r for r in raw if r.score >= threshold]


class DetectionSampler:
    """
    Timer-driven detection loop.

    Example:
        sampler = DetectionSampler(source, aggregator, SamplerConfig(interval_ms=150))
        sampler.enable()              # waiting_model
        sampler.set_detector(model)   # sampling
        ...
        sampler.disable()             # idle
    """

    def __init__(
        self,
        source: ObservationSource,
        aggregator: DetectionAggregator,
        config: Optional[SamplerConfig] = None,
        detector: Optional[Detector] = None,
    ):
        self._source = source
        self._aggregator = aggregator
        self.config = config or SamplerConfig()
        self._detector = detector
        self._enabled = False
        self._session = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._current: Tuple[Detection, ...] = ()
        self._callbacks: List[SampleCallback] = []
        self._tick_errors = 0
        self._skipped_ticks = 0

    @property
    def state(self) -> SamplerState:
        if not self._enabled:
            return SamplerState.IDLE
        if self._detector is None:
            return SamplerState.WAITING_MODEL
        return SamplerState.SAMPLING

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def current_detections(self) -> Tuple[Detection, ...]:
        return self._current

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    @property
    def tick_errors(self) -> int:
        return self._tick_errors

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    def add_callback(self, callback: SampleCallback) -> None:
        """
        Add a callback run after each published tick.

        Args:
            callback: Function taking (frame_data, detections) as arguments.
        """
        self._callbacks.append(callback)

    def set_detector(self, detector: Optional[Detector]) -> None:
        """Attach the loaded detector (or detach it with None)."""
        self._detector = detector
        if self._enabled:
            logging.info(f"Detection sampler state: {self.state.value}")

    def enable(self) -> None:
        """Turn detection on and start the timer. Must run inside the event loop."""
        if self._enabled:
            return
        self._enabled = True
        self._session += 1
        self._start_timer()
        logging.info(
            f"Detection enabled: state={self.state.value}, interval={self.config.interval_ms}ms, "
            f"threshold={self.config.confidence_threshold:.2f}, policy={self.config.tick_policy.value}"
        )

    def disable(self) -> None:
        """Turn detection off; no tick publishes after this returns."""
        was_enabled = self._enabled
        self._enabled = False
        self._session += 1
        self._stop_timer()
        self._current = ()
        if was_enabled:
            logging.info(f"Detection disabled ({len(self._inflight)} detector call(s) still in flight)")

    def set_interval(self, interval_ms: int) -> None:
        """Change the timer period; a running timer restarts with the new period."""
        self.config.interval_ms = interval_ms
        if self._enabled:
            self._stop_timer()
            self._start_timer()

    def set_confidence_threshold(self, threshold: float) -> None:
        self.config.confidence_threshold = threshold

    async def aclose(self) -> None:
        """Disable and wait for in-flight ticks to finish or cancel."""
        self.disable()
        pending = list(self._inflight)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _start_timer(self) -> None:
        self._timer = asyncio.get_running_loop().create_task(self._run_timer())

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time()
        while True:
            next_fire += self.config.interval_ms / 1000.0
            delay = next_fire - loop.time()
            if delay < 0:
                # Fell behind; resync instead of firing a burst
                next_fire = loop.time()
                delay = 0
            await asyncio.sleep(delay)
            self._fire()

    def _fire(self) -> None:
        if self.config.tick_policy == TickPolicy.SKIP_IF_BUSY and self._inflight:
            self._skipped_ticks += 1
            logging.debug("Skipping tick: previous detection still running")
            return
        task = asyncio.get_running_loop().create_task(self.tick())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _detect(self, detector: Detector, frame) -> List[RawDetection]:
        try:
            return list(await detector.detect(frame))
        except Exception as e:
            raise DetectionTickError(f"Detector call failed: {e}") from e

    async def tick(self) -> List[Detection]:
        """
        Run one sampling step.

        Returns the published detections, or an empty list when the tick was
        a no-op, failed, or its result went stale.
        """
        session = self._session
        detector = self._detector
        if not self._enabled or detector is None or not self._source.is_frame_ready:
            return []

        frame_data = await asyncio.to_thread(self._source.read)
        if frame_data is None or session != self._session:
            return []

        try:
            raw = await self._detect(detector, frame_data.frame)
        except DetectionTickError as e:
            self._tick_errors += 1
            logging.warning(str(e))
            return []

        if session != self._session:
            logging.debug("Discarding stale detection result")
            return []

        self._aggregator.record_sample()

        observed_at = datetime.fromtimestamp(frame_data.timestamp, tz=timezone.utc)
        detections = []
        for r in filter_by_confidence(raw, self.config.confidence_threshold):
            try:
                detections.append(Detection.from_raw(r, observed_at=observed_at))
            except ValueError as e:
                logging.warning(f"Skipping malformed detection {r.label!r} {r.bbox}: {e}")

        self._current = tuple(detections)
        if detections:
            self._aggregator.ingest(detections)

        for callback in self._callbacks:
            try:
                callback(frame_data, detections)
            except Exception as e:
                logging.warning(f"Sampler callback error: {e}")

        return detections
