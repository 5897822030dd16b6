"""
Audio Monitor - speech detection and audio patterns

Levels are normalized to [0, 1]. Speech starts when the level exceeds the
threshold and ends once the level has stayed below it for the hangover
period. Each entry into speech emits mic-activity. Every chunk is sampled
once; when chunks stop arriving an open speech segment still ends after
the hangover.

The rolling window drives pattern analysis:
- excessive-talking: more than 30% of samples in speech (0.4)
- conversation-pattern: more than 5 separate speech bursts (0.3)
- high-background-audio: mean level above 0.2 (0.2)

After speech has been heard, 30 seconds without speech emits silence-period.
"""

import logging
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from ...errors import SensorUnavailable
from ...models import EventType, Severity
from ..scheduling import Scheduler, TimerHandle
from ..sources.microphone import MicrophoneSource
from .base import BaseMonitor, Emit

logger = logging.getLogger(__name__)


class AudioMonitor(BaseMonitor):
    """Periodic audio level monitor for one session."""

    name = "audio"

    DEFAULT_INTERVAL = 0.1
    DEFAULT_SPEECH_THRESHOLD = 0.1
    DEFAULT_HANGOVER_SECONDS = 2.0
    DEFAULT_SILENCE_SECONDS = 30.0
    DEFAULT_WINDOW_SIZE = 50

    PATTERN_WEIGHTS: Dict[str, float] = {
        "excessive-talking": 0.4,
        "conversation-pattern": 0.3,
        "high-background-audio": 0.2,
    }
    SPEECH_PERCENT_LIMIT = 30.0
    BURST_LIMIT = 5
    MEAN_LEVEL_LIMIT = 0.2

    def __init__(
        self,
        emit: Emit,
        scheduler: Scheduler,
        microphone: MicrophoneSource,
        interval: float = DEFAULT_INTERVAL,
        speech_threshold: float = DEFAULT_SPEECH_THRESHOLD,
        hangover_seconds: float = DEFAULT_HANGOVER_SECONDS,
        silence_seconds: float = DEFAULT_SILENCE_SECONDS,
        window_size: int = DEFAULT_WINDOW_SIZE,
    ):
        super().__init__(emit, scheduler)
        self.microphone = microphone
        self.interval = interval
        self.speech_threshold = speech_threshold
        self.hangover_seconds = hangover_seconds
        self.silence_seconds = silence_seconds
        self.window_size = window_size

        self.window: Deque[Tuple[float, bool]] = deque(maxlen=window_size)
        self.is_speaking = False
        self._last_speech_at = 0.0
        self._silence_timer: Optional[TimerHandle] = None
        self._active_patterns: frozenset = frozenset()
        self.speech_segments = 0

    def _on_start(self) -> None:
        self._every(self.interval, self.sample)

    def _on_stop(self) -> None:
        self.window.clear()
        self.is_speaking = False
        self._silence_timer = None
        self._active_patterns = frozenset()

    # ============== Sampling ==============

    def sample(self, level: Optional[float] = None) -> Optional[float]:
        """
        Process one level reading.

        Args:
            level: Explicit level; when omitted the microphone source is read

        Returns:
            The level processed, or None when nothing was observed
        """
        if level is None:
            try:
                level = self.microphone.read_level()
            except SensorUnavailable as e:
                self._degrade(EventType.AUDIO_INIT_FAILED.value, e)
                return None
            if level is None:
                self._expire_speech()
                return None

        with self._lock:
            if not self._running or self._degraded:
                return None

            now = self.scheduler.now()
            if level > self.speech_threshold:
                self._last_speech_at = now
                if not self.is_speaking:
                    self._speech_started(level)
            elif self.is_speaking and now - self._last_speech_at >= self.hangover_seconds:
                self._speech_ended()

            self.window.append((level, self.is_speaking))
            self._check_patterns()
        return level

    def _expire_speech(self) -> None:
        """No new chunk: close a speech segment once the hangover has passed."""
        with self._lock:
            if not self._running or not self.is_speaking:
                return
            if self.scheduler.now() - self._last_speech_at >= self.hangover_seconds:
                self._speech_ended()

    def _speech_started(self, level: float) -> None:
        self.is_speaking = True
        self.speech_segments += 1
        self._cancel(self._silence_timer)
        self._silence_timer = None
        self._emit(
            EventType.MIC_ACTIVITY.value,
            f"Speech detected (level: {level:.2f})",
            severity=Severity.LOW,
        )

    def _speech_ended(self) -> None:
        self.is_speaking = False
        self._cancel(self._silence_timer)
        self._silence_timer = self._later(self.silence_seconds, self._silence_elapsed)

    def _silence_elapsed(self) -> None:
        with self._lock:
            self._silence_timer = None
            if self.is_speaking:
                return
            self._emit(
                EventType.SILENCE_PERIOD.value,
                f"No speech for {self.silence_seconds:.0f} seconds",
            )

    # ============== Pattern analysis ==============

    def window_metrics(self) -> Dict[str, float]:
        samples = list(self.window)
        if not samples:
            return {"speech_percent": 0.0, "bursts": 0, "mean_level": 0.0}

        speaking = [s for _, s in samples]
        bursts = sum(1 for prev, cur in zip([False] + speaking, speaking) if cur and not prev)
        return {
            "speech_percent": 100.0 * sum(speaking) / len(samples),
            "bursts": bursts,
            "mean_level": sum(level for level, _ in samples) / len(samples),
        }

    def analyze_patterns(self) -> Dict[str, float]:
        """Patterns present in a full window, with their weights."""
        if len(self.window) < self.window_size:
            return {}

        metrics = self.window_metrics()
        patterns: Dict[str, float] = {}
        if metrics["speech_percent"] > self.SPEECH_PERCENT_LIMIT:
            patterns["excessive-talking"] = self.PATTERN_WEIGHTS["excessive-talking"]
        if metrics["bursts"] > self.BURST_LIMIT:
            patterns["conversation-pattern"] = self.PATTERN_WEIGHTS["conversation-pattern"]
        if metrics["mean_level"] > self.MEAN_LEVEL_LIMIT:
            patterns["high-background-audio"] = self.PATTERN_WEIGHTS["high-background-audio"]
        return patterns

    def _check_patterns(self) -> None:
        patterns = self.analyze_patterns()
        current = frozenset(patterns)
        if current and current != self._active_patterns:
            confidence = min(sum(patterns.values()), 1.0)
            self._emit(
                EventType.AUDIO_CHEATING_PATTERN.value,
                f"Suspicious audio pattern: {', '.join(sorted(patterns))}",
                severity=Severity.MEDIUM,
                confidence=confidence,
                metadata={"patterns": sorted(patterns), **self.window_metrics()},
            )
        self._active_patterns = current

    def get_metrics(self):
        metrics = super().get_metrics()
        metrics.update(self.window_metrics())
        metrics["speech_segments"] = self.speech_segments
        return metrics
