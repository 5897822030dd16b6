"""
Camera Source - latest webcam observation for one session

Frames arrive from the client as base64 JPEG/PNG. Faces are counted with
OpenCV's frontal-face Haar cascade. Clients that already run face
detection in the browser may report a face count directly instead.
"""

import base64
import binascii
import logging
import threading
import uuid
from typing import Optional

import cv2
import numpy as np

from ...errors import SensorUnavailable, ValidationError

logger = logging.getLogger(__name__)


def decode_frame(frame_base64: str) -> np.ndarray:
    """
    Decode a base64 image (optionally a data URL) into a BGR frame.

    Raises:
        ValidationError: if the payload is not a decodable image
    """
    if "," in frame_base64 and frame_base64.startswith("data:"):
        frame_base64 = frame_base64.split(",", 1)[1]

    try:
        frame_bytes = base64.b64decode(frame_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid frame data")

    frame_array = np.frombuffer(frame_bytes, dtype=np.uint8)
    frame = cv2.imdecode(frame_array, cv2.IMREAD_COLOR) if frame_array.size else None
    if frame is None:
        raise ValidationError("Invalid frame data")
    return frame


class HaarFaceCounter:
    """
    Counts frontal faces using OpenCV's bundled Haar cascade.

    The cascade is loaded lazily on first use and shared by all sessions.
    """

    CASCADE_FILE = "haarcascade_frontalface_default.xml"
    DEFAULT_SCALE_FACTOR = 1.1
    DEFAULT_MIN_NEIGHBORS = 5
    DEFAULT_MIN_SIZE = (60, 60)

    _cascade = None
    _cascade_lock = threading.Lock()

    @classmethod
    def _get_cascade(cls):
        with cls._cascade_lock:
            if cls._cascade is None:
                path = cv2.data.haarcascades + cls.CASCADE_FILE
                cascade = cv2.CascadeClassifier(path)
                if cascade.empty():
                    raise SensorUnavailable("camera", f"could not load face cascade from {path}")
                cls._cascade = cascade
                logger.info(f"Loaded face cascade: {path}")
            return cls._cascade

    def count(self, frame: np.ndarray) -> int:
        if frame is None or frame.size == 0:
            return 0
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        faces = self._get_cascade().detectMultiScale(
            gray,
            scaleFactor=self.DEFAULT_SCALE_FACTOR,
            minNeighbors=self.DEFAULT_MIN_NEIGHBORS,
            minSize=self.DEFAULT_MIN_SIZE,
        )
        return len(faces)


class CameraSource:
    """Holds the face observation reported since the last read."""

    name = "camera"

    def __init__(self, face_counter: Optional[HaarFaceCounter] = None):
        self.face_counter = face_counter or HaarFaceCounter()
        self._lock = threading.Lock()
        self._face_count: Optional[int] = None
        self._has_frame = False
        self._unavailable_reason: Optional[str] = None
        self._closed = False
        self.frames_received = 0

    def submit_frame_base64(self, frame_base64: str) -> int:
        """Decode a client frame, count faces and store the observation."""
        frame = decode_frame(frame_base64)
        count = self.face_counter.count(frame)
        with self._lock:
            self._face_count = count
            self._has_frame = True
            self.frames_received += 1
        return count

    def submit_face_count(self, count: int) -> None:
        if count < 0:
            raise ValidationError("Face count cannot be negative")
        with self._lock:
            self._face_count = count
            self.frames_received += 1

    def mark_unavailable(self, reason: str) -> None:
        """Record that the client could not obtain camera access."""
        with self._lock:
            self._unavailable_reason = reason
        logger.warning(f"[CAMERA] Marked unavailable: {reason}")

    def read_face_count(self) -> Optional[int]:
        """
        Take the face count reported since the last read, or None if there is none.

        Each observation is returned once, so a client that stops sending
        frames produces no further findings.

        Raises:
            SensorUnavailable: if camera access failed
        """
        with self._lock:
            if self._unavailable_reason is not None:
                raise SensorUnavailable(self.name, self._unavailable_reason)
            face_count, self._face_count = self._face_count, None
            return face_count

    def capture_snapshot(self) -> Optional[str]:
        """Reference for the current frame; None when no frame is held."""
        with self._lock:
            if not self._has_frame or self._closed:
                return None
        return f"snapshot-{uuid.uuid4().hex[:12]}"

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._face_count = None
            self._has_frame = False
