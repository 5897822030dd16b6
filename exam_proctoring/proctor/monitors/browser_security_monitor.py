"""
Browser Security Monitor - periodic integrity checks of the exam client

Checks run every interval:
- camera track enabled              camera-disabled       critical
- microphone track enabled          microphone-disabled   critical
- client online and heard from      network-disconnected  critical
- developer tools heuristic         browser-security      medium
- browser extensions present        browser-security      medium
- activity within the idle timeout  inactivity-timeout    medium

Reachability is judged from the client side only: the client must not
have reported itself offline and must have posted a signal within the
silence limit.

Every finding is logged and counted by the escalation policy.
"""

import logging
from typing import List, Optional

from ...models import EventType, Severity
from ..event_bus import MonitorEvent
from ..scheduling import Scheduler
from ..sources.devices import ConnectivitySource, DeviceSource
from .base import BaseMonitor, Emit

logger = logging.getLogger(__name__)


class BrowserSecurityMonitor(BaseMonitor):
    """Periodic browser and device integrity checks for one session."""

    name = "browser-security"

    DEFAULT_INTERVAL = 30.0
    DEFAULT_CLIENT_SILENCE_SECONDS = 60.0
    DEFAULT_DEVTOOLS_THRESHOLD_PX = 160
    DEFAULT_INACTIVITY_SECONDS = 30 * 60

    def __init__(
        self,
        emit: Emit,
        scheduler: Scheduler,
        devices: DeviceSource,
        connectivity: ConnectivitySource,
        interval: float = DEFAULT_INTERVAL,
        client_silence_seconds: float = DEFAULT_CLIENT_SILENCE_SECONDS,
        devtools_threshold_px: int = DEFAULT_DEVTOOLS_THRESHOLD_PX,
        inactivity_seconds: float = DEFAULT_INACTIVITY_SECONDS,
    ):
        super().__init__(emit, scheduler)
        self.devices = devices
        self.connectivity = connectivity
        self.interval = interval
        self.client_silence_seconds = client_silence_seconds
        self.devtools_threshold_px = devtools_threshold_px
        self.inactivity_seconds = inactivity_seconds

        self.checks_run = 0
        self._inactivity_reported = False

    def _on_start(self) -> None:
        self._every(self.interval, self.sample)

    async def sample(self) -> List[MonitorEvent]:
        """Run all checks once; returns the findings emitted."""
        if not self._running:
            return []

        findings: List[MonitorEvent] = []
        status = self.devices.snapshot()

        if not status.camera_enabled:
            findings.append(self._finding(
                EventType.CAMERA_DISABLED, "Camera has been disabled", Severity.CRITICAL,
            ))

        if not status.microphone_enabled:
            findings.append(self._finding(
                EventType.MICROPHONE_DISABLED, "Microphone has been disabled", Severity.CRITICAL,
            ))

        unreachable = self._client_unreachable()
        if unreachable:
            logger.warning(f"[SECURITY] Client unreachable: {unreachable}")
            findings.append(self._finding(EventType.NETWORK_DISCONNECTED, unreachable, Severity.CRITICAL))

        if status.window_delta_px > self.devtools_threshold_px:
            findings.append(self._finding(
                EventType.BROWSER_SECURITY,
                f"Developer tools may be open (window delta {status.window_delta_px}px)",
                Severity.MEDIUM,
            ))

        if status.extensions:
            findings.append(self._finding(
                EventType.BROWSER_SECURITY,
                f"Browser extensions detected: {', '.join(status.extensions)}",
                Severity.MEDIUM,
            ))

        idle_seconds = self.devices.seconds_since_activity()
        if idle_seconds > self.inactivity_seconds:
            if not self._inactivity_reported:
                self._inactivity_reported = True
                findings.append(self._finding(
                    EventType.INACTIVITY_TIMEOUT,
                    f"No activity for {idle_seconds / 60:.0f} minutes",
                    Severity.MEDIUM,
                ))
        else:
            self._inactivity_reported = False

        self.checks_run += 1
        emitted = []
        for finding in findings:
            event = self._emit(
                finding.event_type,
                finding.details,
                severity=finding.severity,
                escalate=True,
            )
            if event is not None:
                emitted.append(event)
        return emitted

    def _client_unreachable(self) -> Optional[str]:
        """Reason the client counts as unreachable, or None."""
        if not self.connectivity.online:
            return "Client reported offline during security check"
        silent_for = self.connectivity.seconds_since_contact()
        if silent_for > self.client_silence_seconds:
            return f"No contact from exam client for {silent_for:.0f} seconds"
        return None

    def _finding(self, event_type: EventType, details: str, severity: Severity) -> MonitorEvent:
        return MonitorEvent(
            event_type=event_type.value,
            details=details,
            severity=severity,
            escalate=True,
            source=self.name,
        )

    def get_metrics(self):
        metrics = super().get_metrics()
        metrics["checks_run"] = self.checks_run
        metrics["seconds_since_contact"] = round(self.connectivity.seconds_since_contact(), 1)
        return metrics
