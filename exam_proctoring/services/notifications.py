"""
Notification Channel - student-facing notices per session

Monitors and the escalation policy post warnings here; the exam client
drains its queue by polling. Queues are bounded, so the oldest notices are
dropped when a client stops polling. A drained queue is removed, and the
queue of a finished session is discarded after a retention delay.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List

from ..models import isoformat_ms, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, str]:
        return {
            "level": self.level,
            "message": self.message,
            "timestamp": isoformat_ms(self.timestamp),
        }


class NotificationChannel:
    """Bounded notification queue per session."""

    DEFAULT_MAX_PENDING = 100

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING):
        self.max_pending = max_pending
        self._lock = threading.Lock()
        self._queues: Dict[str, Deque[Notification]] = {}

    def post(self, session_id: str, level: str, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        with self._lock:
            queue = self._queues.get(session_id)
            if queue is None:
                queue = deque(maxlen=self.max_pending)
                self._queues[session_id] = queue
            queue.append(notification)
        logger.debug(f"[NOTIFY] session={session_id} {level}: {message}")
        return notification

    def drain(self, session_id: str) -> List[Notification]:
        """Return and clear all pending notices for a session."""
        with self._lock:
            queue = self._queues.pop(session_id, None)
        return list(queue) if queue else []

    def discard(self, session_id: str) -> int:
        """Drop the queue of a finished session; returns the number of notices lost."""
        with self._lock:
            queue = self._queues.pop(session_id, None)
        if queue:
            logger.debug(f"[NOTIFY] session={session_id} discarded {len(queue)} undrained notices")
        return len(queue) if queue else 0

    def pending_sessions(self) -> int:
        with self._lock:
            return len(self._queues)
