"""
Device and connectivity state reported by the exam client.

The browser posts heartbeats with media-track status, window geometry and
detected extensions; online/offline transitions are posted as they happen.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceStatus:
    """Latest device heartbeat. Defaults assume a healthy client until told otherwise."""
    camera_enabled: bool = True
    microphone_enabled: bool = True
    window_delta_px: int = 0
    extensions: Tuple[str, ...] = ()


class DeviceSource:
    """Device heartbeat and user activity tracking for one session."""

    name = "devices"

    def __init__(self, clock: Callable[[], float]):
        self._clock = clock
        self._lock = threading.Lock()
        self._status = DeviceStatus()
        self._last_activity = clock()
        self.reports = 0

    def update(
        self,
        camera_enabled: Optional[bool] = None,
        microphone_enabled: Optional[bool] = None,
        window_delta_px: Optional[int] = None,
        extensions: Optional[List[str]] = None,
    ) -> DeviceStatus:
        changes = {}
        if camera_enabled is not None:
            changes["camera_enabled"] = camera_enabled
        if microphone_enabled is not None:
            changes["microphone_enabled"] = microphone_enabled
        if window_delta_px is not None:
            changes["window_delta_px"] = max(0, int(window_delta_px))
        if extensions is not None:
            changes["extensions"] = tuple(extensions)

        with self._lock:
            self._status = replace(self._status, **changes)
            self.reports += 1
            return self._status

    def record_activity(self) -> None:
        with self._lock:
            self._last_activity = self._clock()

    def snapshot(self) -> DeviceStatus:
        with self._lock:
            return self._status

    def seconds_since_activity(self) -> float:
        with self._lock:
            return self._clock() - self._last_activity

    def close(self) -> None:
        with self._lock:
            self._status = DeviceStatus()


ConnectivityListener = Callable[[bool], None]


class ConnectivitySource:
    """
    Client connectivity as seen from the client.

    Holds the online flag, the browser's downlink estimate and the
    round-trip time the client measured against the health endpoint, plus
    the time of the last contact from the client. Every signal post counts
    as contact.
    """

    name = "connectivity"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._online = True
        self._downlink_mbps: Optional[float] = None
        self._rtt_ms: Optional[float] = None
        self._last_contact = clock()
        self._listeners: List[ConnectivityListener] = []

    @property
    def online(self) -> bool:
        with self._lock:
            return self._online

    @property
    def downlink_mbps(self) -> Optional[float]:
        with self._lock:
            return self._downlink_mbps

    @property
    def rtt_ms(self) -> Optional[float]:
        with self._lock:
            return self._rtt_ms

    def add_listener(self, listener: ConnectivityListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def touch(self) -> None:
        """Record contact from the client."""
        with self._lock:
            self._last_contact = self._clock()

    def seconds_since_contact(self) -> float:
        with self._lock:
            return self._clock() - self._last_contact

    def set_online(
        self,
        online: bool,
        downlink_mbps: Optional[float] = None,
        rtt_ms: Optional[float] = None,
    ) -> bool:
        """Update connectivity; returns True when the online flag changed."""
        with self._lock:
            changed = online != self._online
            self._online = online
            if downlink_mbps is not None:
                self._downlink_mbps = max(0.0, float(downlink_mbps))
            if rtt_ms is not None:
                self._rtt_ms = max(0.0, float(rtt_ms))
            self._last_contact = self._clock()
            listeners = list(self._listeners)

        if changed:
            logger.info(f"[CONNECTIVITY] Client is now {'online' if online else 'offline'}")
            for listener in listeners:
                listener(online)
        return changed

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
