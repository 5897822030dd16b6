"""
Base class for signal monitors.

A monitor owns its timers and history and reports findings through an
emit callable. It never writes session state itself.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from ...errors import SensorUnavailable
from ...models import Severity
from ..event_bus import MonitorEvent
from ..scheduling import Callback, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

Emit = Callable[[MonitorEvent], None]


class BaseMonitor:
    """
    Lifecycle shared by all monitors.

    start() arms the monitor's timers and returns a cancellation token;
    stop() cancels every timer the monitor owns and is safe to call twice.
    A monitor whose sensor becomes unavailable reports it once and goes
    quiet without affecting the other monitors of the session.
    """

    name = "monitor"

    def __init__(self, emit: Emit, scheduler: Scheduler):
        self._emit_callback = emit
        self.scheduler = scheduler
        self._lock = threading.RLock()
        self._handles: List[TimerHandle] = []
        self._running = False
        self._degraded = False
        self._token: Optional[TimerHandle] = None
        self.events_emitted = 0

    # ============== Lifecycle ==============

    def start(self) -> TimerHandle:
        with self._lock:
            if self._running and self._token is not None:
                return self._token
            self._running = True
            self._degraded = False
            self._token = TimerHandle(self.stop)
            self._on_start()
            logger.debug(f"[{self.name.upper()}] monitor started")
            return self._token

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._cancel_timers()
            self._on_stop()
            logger.debug(f"[{self.name.upper()}] monitor stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _on_start(self) -> None:
        """Arm timers. Subclasses override."""

    def _on_stop(self) -> None:
        """Release monitor state. Subclasses override."""

    # ============== Timers ==============

    def _every(self, interval: float, callback: Callback) -> TimerHandle:
        handle = self.scheduler.call_every(interval, callback)
        self._handles.append(handle)
        return handle

    def _later(self, delay: float, callback: Callback) -> TimerHandle:
        handle: Optional[TimerHandle] = None

        def fire():
            with self._lock:
                if handle in self._handles:
                    self._handles.remove(handle)
                if not self._running or self._degraded:
                    return None
            return callback()

        handle = self.scheduler.call_later(delay, fire)
        self._handles.append(handle)
        return handle

    def _cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is None:
            return
        handle.cancel()
        if handle in self._handles:
            self._handles.remove(handle)

    def _cancel_timers(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()

    @property
    def pending_timers(self) -> int:
        return len(self._handles)

    # ============== Emission ==============

    def _emit(
        self,
        event_type: str,
        details: str,
        severity: Optional[Severity] = None,
        escalate: bool = False,
        **kwargs: Any,
    ) -> Optional[MonitorEvent]:
        if not self._running or self._degraded:
            return None
        event = MonitorEvent(
            event_type=event_type,
            details=details,
            severity=severity,
            escalate=escalate,
            source=self.name,
            **kwargs,
        )
        self.events_emitted += 1
        self._emit_callback(event)
        return event

    def _degrade(self, event_type: str, error: SensorUnavailable) -> None:
        """Report a sensor failure once, then stop sampling."""
        with self._lock:
            if self._degraded:
                return
            logger.warning(f"[{self.name.upper()}] sensor unavailable: {error.reason}")
            self._emit(event_type, str(error), severity=Severity.HIGH)
            self._degraded = True
            self._cancel_timers()

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "monitor": self.name,
            "running": self._running,
            "degraded": self._degraded,
            "events_emitted": self.events_emitted,
        }
