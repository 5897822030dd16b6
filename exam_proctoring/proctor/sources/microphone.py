"""
Microphone Source - normalized audio level for one session

Clients post short int16 PCM chunks; the level is the RMS amplitude
scaled to [0, 1] by the int16 full-scale value.
"""

import base64
import binascii
import logging
import threading
from typing import Optional

import numpy as np

from ...errors import SensorUnavailable, ValidationError

logger = logging.getLogger(__name__)


def pcm_level(audio_data: bytes) -> float:
    """
    Normalized RMS level of int16 PCM samples.

    Args:
        audio_data: Raw audio bytes (int16 little-endian)

    Returns:
        Level in [0, 1]; 0.0 for an empty chunk
    """
    if len(audio_data) % 2:
        audio_data = audio_data[:-1]
    samples = np.frombuffer(audio_data, dtype=np.int16)
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))
    return min(rms / 32768.0, 1.0)


class MicrophoneSource:
    """Holds the audio level reported since the last read."""

    name = "microphone"

    def __init__(self):
        self._lock = threading.Lock()
        self._level: Optional[float] = None
        self._unavailable_reason: Optional[str] = None
        self.chunks_received = 0

    def submit_pcm_base64(self, audio_base64: str) -> float:
        try:
            audio_bytes = base64.b64decode(audio_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Invalid audio data")
        level = pcm_level(audio_bytes)
        self.submit_level(level)
        return level

    def submit_level(self, level: float) -> None:
        if not 0.0 <= level <= 1.0:
            raise ValidationError("Audio level must be between 0 and 1")
        with self._lock:
            self._level = level
            self.chunks_received += 1

    def mark_unavailable(self, reason: str) -> None:
        with self._lock:
            self._unavailable_reason = reason
        logger.warning(f"[MICROPHONE] Marked unavailable: {reason}")

    def read_level(self) -> Optional[float]:
        """
        Take the level reported since the last read, or None if there is none.

        Raises:
            SensorUnavailable: if microphone access failed
        """
        with self._lock:
            if self._unavailable_reason is not None:
                raise SensorUnavailable(self.name, self._unavailable_reason)
            level, self._level = self._level, None
            return level

    def close(self) -> None:
        with self._lock:
            self._level = None
