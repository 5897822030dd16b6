"""
Network Monitor - connection quality and disconnections

Quality is classified from the round-trip time and downlink the client
measured against the health endpoint:

    excellent  latency <= 50 ms  and bandwidth >= 10 Mbps
    good       latency <= 150 ms and bandwidth >= 5 Mbps
    fair       latency <= 300 ms and bandwidth >= 2 Mbps
    poor       otherwise
    offline    client reported offline

A server-side liveness check, when configured, only fills in a missing client
measurement. It never reports a disconnection; an unreachable endpoint leaves
the quality unchanged.

Going offline starts a grace timer; if the client is still offline when
it fires, a critical network-disconnected is emitted for escalation.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from ...models import EventType, Severity
from ..scheduling import Scheduler, TimerHandle
from ..sources.devices import ConnectivitySource
from ..sources.liveness import LivenessCheck, LivenessResult
from .base import BaseMonitor, Emit

logger = logging.getLogger(__name__)

OFFLINE = "offline"


class NetworkMonitor(BaseMonitor):
    """Periodic network quality monitor for one session."""

    name = "network"

    DEFAULT_INTERVAL = 10.0
    DEFAULT_GRACE_SECONDS = 5.0
    DEFAULT_LIVENESS_TIMEOUT = 5.0

    # (quality, max latency ms, min bandwidth Mbps), best first
    QUALITY_THRESHOLDS: Tuple[Tuple[str, float, float], ...] = (
        ("excellent", 50, 10),
        ("good", 150, 5),
        ("fair", 300, 2),
    )
    QUALITY_SCORES: Dict[str, int] = {
        "excellent": 100,
        "good": 75,
        "fair": 50,
        "poor": 25,
        OFFLINE: 0,
    }

    def __init__(
        self,
        emit: Emit,
        scheduler: Scheduler,
        liveness: Optional[LivenessCheck],
        connectivity: ConnectivitySource,
        interval: float = DEFAULT_INTERVAL,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        liveness_timeout: float = DEFAULT_LIVENESS_TIMEOUT,
    ):
        """
        Initialize network monitor.

        Args:
            emit: Callback receiving monitor events
            scheduler: Timer source
            liveness: Optional server-side check used when the client sent no measurement
            connectivity: Client-reported online state, downlink and round-trip time
            interval: Seconds between quality checks
            grace_seconds: Offline time tolerated before network-disconnected
            liveness_timeout: Upper bound on one server-side check; a timed-out check is ignored
        """
        super().__init__(emit, scheduler)
        self.liveness = liveness
        self.connectivity = connectivity
        self.interval = interval
        self.grace_seconds = grace_seconds
        self.liveness_timeout = liveness_timeout

        self.quality: Optional[str] = None
        self.last_result: Optional[LivenessResult] = None
        self.disconnected = False
        self._offline_since: Optional[float] = None
        self._grace_timer: Optional[TimerHandle] = None
        self._listening = False

    def _on_start(self) -> None:
        if not self._listening:
            self.connectivity.add_listener(self.on_connectivity_change)
            self._listening = True
        self._every(self.interval, self.sample)
        if not self.connectivity.online:
            self.on_connectivity_change(False)

    def _on_stop(self) -> None:
        self._grace_timer = None
        self._offline_since = None

    @classmethod
    def classify(cls, latency_ms: float, bandwidth_mbps: Optional[float] = None) -> str:
        """Quality band; a missing bandwidth does not limit the band."""
        for quality, max_latency, min_bandwidth in cls.QUALITY_THRESHOLDS:
            if latency_ms <= max_latency and (bandwidth_mbps is None or bandwidth_mbps >= min_bandwidth):
                return quality
        return "poor"

    @property
    def quality_score(self) -> int:
        return self.QUALITY_SCORES.get(self.quality or "good", 75)

    # ============== Sampling ==============

    async def sample(self) -> Optional[str]:
        """
        Run one quality check.

        Returns:
            The current quality, or None while nothing has been measured
        """
        if not self._running:
            return None

        if not self.connectivity.online:
            self._set_quality(OFFLINE)
            return OFFLINE

        latency = self.connectivity.rtt_ms
        bandwidth = self.connectivity.downlink_mbps
        source = "client"

        if latency is None:
            result = await self._measure_server_side()
            if result is None:
                return self.quality
            latency = result.latency_ms
            if bandwidth is None:
                bandwidth = result.bandwidth_mbps
            source = "server"

        quality = self.classify(latency, bandwidth)

        # The client may have gone offline while the measurement was in flight.
        if not self.connectivity.online:
            quality = OFFLINE

        self._set_quality(quality, latency_ms=latency, bandwidth_mbps=bandwidth, source=source)
        return quality

    async def _measure_server_side(self) -> Optional[LivenessResult]:
        if self.liveness is None:
            return None
        try:
            result = await asyncio.wait_for(self.liveness.measure(), timeout=self.liveness_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[NETWORK] Liveness check timed out after {self.liveness_timeout}s")
            result = LivenessCheck.failed()

        self.last_result = result
        if not result.reachable:
            logger.warning(f"[NETWORK] Liveness check of {self.liveness.url} failed, quality left at {self.quality}")
            return None
        return result

    def _set_quality(self, quality: str, **metrics) -> None:
        with self._lock:
            previous = self.quality
            self.quality = quality
            if previous is None or previous == quality:
                return
            self._emit(
                EventType.NETWORK_QUALITY_CHANGED.value,
                f"Network quality changed from {previous} to {quality}",
                severity=Severity.LOW if quality not in ("poor", OFFLINE) else Severity.MEDIUM,
                metadata={"previous": previous, "quality": quality, **metrics},
            )

    # ============== Connectivity ==============

    def on_connectivity_change(self, online: bool) -> None:
        with self._lock:
            if not self._running:
                return
            now = self.scheduler.now()
            if not online:
                if self._offline_since is None:
                    self._offline_since = now
                self._set_quality(OFFLINE)
                if self._grace_timer is None:
                    self._grace_timer = self._later(self.grace_seconds, self._grace_elapsed)
                return

            self._cancel(self._grace_timer)
            self._grace_timer = None
            offline_for = now - self._offline_since if self._offline_since is not None else 0.0
            self._offline_since = None

            if self.disconnected:
                self.disconnected = False
                self._emit(
                    EventType.NETWORK_RESTORED.value,
                    f"Connection restored after {offline_for:.0f} seconds offline",
                )

    def _grace_elapsed(self) -> None:
        with self._lock:
            self._grace_timer = None
            if self.connectivity.online or self.disconnected:
                return
            self.disconnected = True
            offline_for = self.scheduler.now() - (self._offline_since or self.scheduler.now())
            self._emit(
                EventType.NETWORK_DISCONNECTED.value,
                f"Connection lost for more than {self.grace_seconds:.0f} seconds",
                severity=Severity.CRITICAL,
                escalate=True,
                metadata={"offline_seconds": round(offline_for, 1)},
            )

    def get_metrics(self):
        metrics = super().get_metrics()
        metrics["quality"] = self.quality
        metrics["quality_score"] = self.quality_score
        metrics["disconnected"] = self.disconnected
        return metrics
