"""
Face Monitor - face presence, multiple faces and presence patterns

Every sample reads the latest face count from the camera source:
- no face for longer than the absence threshold -> face-not-visible
- more than one face -> multiple-faces (immediately)

A bounded history feeds pattern analysis over the most recent window:
- frequent-absence: >= 3 samples without a face
- multiple-people: >= 2 samples with several faces
- inconsistent-presence: mean change in face count between samples > 1
Each newly detected pattern emits cheating-pattern-detected with the
combined (capped) confidence of all patterns present.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple

from ...errors import SensorUnavailable
from ...models import EventType, Severity
from ..scheduling import Scheduler
from ..sources.camera import CameraSource
from .base import BaseMonitor, Emit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceSample:
    at: float
    face_count: int


class FaceMonitor(BaseMonitor):
    """Periodic face presence monitor for one session."""

    name = "face"

    DEFAULT_INTERVAL = 10.0
    DEFAULT_ABSENCE_SECONDS = 5.0
    DEFAULT_HISTORY_SIZE = 10
    DEFAULT_PATTERN_WINDOW = 5

    PATTERN_WEIGHTS: Dict[str, float] = {
        "frequent-absence": 0.3,
        "multiple-people": 0.5,
        "inconsistent-presence": 0.2,
    }
    MIN_ABSENT_SAMPLES = 3
    MIN_MULTI_FACE_SAMPLES = 2
    MAX_MEAN_COUNT_CHANGE = 1.0

    def __init__(
        self,
        emit: Emit,
        scheduler: Scheduler,
        camera: CameraSource,
        interval: float = DEFAULT_INTERVAL,
        absence_seconds: float = DEFAULT_ABSENCE_SECONDS,
        history_size: int = DEFAULT_HISTORY_SIZE,
        pattern_window: int = DEFAULT_PATTERN_WINDOW,
        snapshots_enabled: bool = False,
        snapshot_delay: Tuple[float, float] = (120.0, 300.0),
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize face monitor.

        Args:
            emit: Callback receiving monitor events
            scheduler: Timer source
            camera: Camera source for this session
            interval: Seconds between samples
            absence_seconds: Time without a face before face-not-visible
            history_size: Number of samples kept
            pattern_window: Number of most recent samples analyzed for patterns
            snapshots_enabled: Capture snapshots at random intervals
            snapshot_delay: (min, max) seconds between snapshots
            rng: Random source for snapshot timing
        """
        super().__init__(emit, scheduler)
        self.camera = camera
        self.interval = interval
        self.absence_seconds = absence_seconds
        self.pattern_window = pattern_window
        self.snapshots_enabled = snapshots_enabled
        self.snapshot_delay = snapshot_delay
        self.rng = rng or random.Random()

        self.history: Deque[FaceSample] = deque(maxlen=history_size)
        self._last_face_seen = 0.0
        self._active_patterns: frozenset = frozenset()
        self.snapshots_taken = 0

    def _on_start(self) -> None:
        self._last_face_seen = self.scheduler.now()
        self._every(self.interval, self.sample)
        if self.snapshots_enabled:
            self._schedule_snapshot()

    def _on_stop(self) -> None:
        self.history.clear()
        self._active_patterns = frozenset()

    # ============== Sampling ==============

    def sample(self) -> Optional[int]:
        """Take one observation; returns the face count used, if any."""
        try:
            face_count = self.camera.read_face_count()
        except SensorUnavailable as e:
            self._degrade(EventType.CAMERA_ACCESS_DENIED.value, e)
            return None

        if face_count is None:
            return None

        with self._lock:
            if not self._running or self._degraded:
                return None

            now = self.scheduler.now()
            self.history.append(FaceSample(at=now, face_count=face_count))

            if face_count == 0:
                absent_for = now - self._last_face_seen
                if absent_for > self.absence_seconds:
                    self._emit(
                        EventType.FACE_NOT_VISIBLE.value,
                        f"No face detected for {absent_for:.0f} seconds",
                        severity=Severity.MEDIUM,
                    )
            else:
                self._last_face_seen = now
                if face_count > 1:
                    self._emit(
                        EventType.MULTIPLE_FACES.value,
                        f"{face_count} faces detected in frame",
                        severity=Severity.HIGH,
                    )

            self._check_patterns()
        return face_count

    # ============== Pattern analysis ==============

    def analyze_patterns(self) -> Dict[str, float]:
        """Patterns present in the most recent window, with their weights."""
        if len(self.history) < self.pattern_window:
            return {}

        recent: List[int] = [s.face_count for s in list(self.history)[-self.pattern_window:]]
        patterns: Dict[str, float] = {}

        if sum(1 for c in recent if c == 0) >= self.MIN_ABSENT_SAMPLES:
            patterns["frequent-absence"] = self.PATTERN_WEIGHTS["frequent-absence"]

        if sum(1 for c in recent if c > 1) >= self.MIN_MULTI_FACE_SAMPLES:
            patterns["multiple-people"] = self.PATTERN_WEIGHTS["multiple-people"]

        changes = [abs(b - a) for a, b in zip(recent, recent[1:])]
        if changes and sum(changes) / len(changes) > self.MAX_MEAN_COUNT_CHANGE:
            patterns["inconsistent-presence"] = self.PATTERN_WEIGHTS["inconsistent-presence"]

        return patterns

    def _check_patterns(self) -> None:
        patterns = self.analyze_patterns()
        confidence = min(sum(patterns.values()), 1.0)

        for pattern in patterns:
            if pattern not in self._active_patterns:
                self._emit(
                    EventType.CHEATING_PATTERN_DETECTED.value,
                    f"Suspicious face pattern: {pattern}",
                    severity=Severity.HIGH,
                    confidence=confidence,
                    metadata={"pattern": pattern, "patterns": sorted(patterns)},
                )

        self._active_patterns = frozenset(patterns)

    # ============== Snapshots ==============

    def _schedule_snapshot(self) -> None:
        low, high = self.snapshot_delay
        self._later(self.rng.uniform(low, high), self._take_snapshot)

    def _take_snapshot(self) -> None:
        snapshot_ref = self.camera.capture_snapshot()
        if snapshot_ref:
            self.snapshots_taken += 1
            self._emit(
                EventType.SCREENSHOT_CAPTURED.value,
                "Periodic snapshot captured",
                snapshot_ref=snapshot_ref,
            )
        self._schedule_snapshot()
