"""
Visibility Monitor - tab switches and time away from the exam

focus_lost emits tab-switch and arms the off-screen timer. focus_gained
cancels the timer and bumps the generation counter, so a timer callback
that was already queued when the student returned finds a stale
generation and does nothing.
"""

import logging
from typing import Optional

from ...models import EventType, Severity
from ..scheduling import Scheduler, TimerHandle
from .base import BaseMonitor, Emit

logger = logging.getLogger(__name__)


class VisibilityMonitor(BaseMonitor):
    """Event-driven tab visibility monitor for one session."""

    name = "visibility"

    DEFAULT_OFF_SCREEN_SECONDS = 10.0

    def __init__(self, emit: Emit, scheduler: Scheduler, off_screen_seconds: float = DEFAULT_OFF_SCREEN_SECONDS):
        super().__init__(emit, scheduler)
        self.off_screen_seconds = off_screen_seconds
        self.tab_switch_count = 0
        self.hidden = False
        self._generation = 0
        self._off_screen_timer: Optional[TimerHandle] = None

    def _on_stop(self) -> None:
        self._generation += 1
        self._off_screen_timer = None
        self.hidden = False

    def sample(self, visible: bool) -> None:
        """Apply a visibility report from the client."""
        if visible:
            self.focus_gained()
        else:
            self.focus_lost()

    def focus_lost(self) -> None:
        with self._lock:
            if not self._running or self.hidden:
                return
            self.hidden = True
            self.tab_switch_count += 1
            self._generation += 1
            generation = self._generation

            self._emit(
                EventType.TAB_SWITCH.value,
                f"Student switched away from exam tab (count: {self.tab_switch_count})",
                severity=Severity.MEDIUM,
            )
            self._off_screen_timer = self._later(
                self.off_screen_seconds,
                lambda: self._off_screen_elapsed(generation),
            )

    def focus_gained(self) -> None:
        with self._lock:
            if not self._running or not self.hidden:
                return
            self.hidden = False
            self._generation += 1
            self._cancel(self._off_screen_timer)
            self._off_screen_timer = None

            if self.tab_switch_count > 0:
                self._emit(
                    EventType.TAB_RETURN.value,
                    f"Student returned to exam tab (total switches: {self.tab_switch_count})",
                )

    def _off_screen_elapsed(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self.hidden:
                return
            self._off_screen_timer = None
            self._emit(
                EventType.OFF_SCREEN.value,
                f"Student away from exam for more than {self.off_screen_seconds:.0f} seconds",
                severity=Severity.MEDIUM,
            )

    def get_metrics(self):
        metrics = super().get_metrics()
        metrics["tab_switch_count"] = self.tab_switch_count
        metrics["hidden"] = self.hidden
        return metrics
