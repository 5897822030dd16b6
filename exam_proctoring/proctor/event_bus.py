"""
Session Event Bus - typed, per-session fan-out of monitor findings

Each session owns one bus. Publishing holds the bus lock for the whole
delivery, so subscribers observe events in publish order. A failing
subscriber is logged and does not prevent delivery to the others.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models import ProctoringEvent, Severity, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorEvent:
    """
    A finding produced by a monitor.

    Attributes:
        event_type: Proctoring event type written to the log
        details: Human readable description
        severity: Violation severity, when the finding is a violation
        confidence: Pattern confidence in [0, 1], for pattern findings
        snapshot_ref: Reference to a stored snapshot image
        escalate: Whether the finding counts toward the escalation policy
        source: Name of the emitting monitor
    """
    event_type: str
    details: str
    severity: Optional[Severity] = None
    confidence: Optional[float] = None
    snapshot_ref: Optional[str] = None
    escalate: bool = False
    source: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_proctoring_event(self) -> ProctoringEvent:
        details = self.details
        if self.confidence is not None:
            details = f"{details} (confidence: {self.confidence:.2f})"
        return ProctoringEvent(
            event_type=self.event_type,
            details=details,
            timestamp=self.timestamp,
            snapshot_ref=self.snapshot_ref,
            severity=self.severity,
        )


Subscriber = Callable[[str, MonitorEvent], None]


class SessionEventBus:
    """Ordered event delivery for one session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._lock = threading.RLock()
        self._subscribers: List[Subscriber] = []
        self._closed = False
        self.published = 0

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Add a subscriber; returns a function that removes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe():
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: MonitorEvent) -> None:
        with self._lock:
            if self._closed:
                logger.debug(f"[BUS] session={self.session_id} closed, dropping {event.event_type}")
                return
            self.published += 1
            for subscriber in list(self._subscribers):
                try:
                    subscriber(self.session_id, event)
                except Exception as e:
                    logger.error(
                        f"[BUS] session={self.session_id} subscriber failed on {event.event_type}: {e}",
                        exc_info=True,
                    )

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._subscribers.clear()

    @property
    def closed(self) -> bool:
        return self._closed
