"""
Violation Escalation Policy - automatic termination after serious violations

Rules:
- a critical violation schedules termination after the grace period
- reaching the maximum number of violations (any severity) does the same
- the target status is cheating-detected for cheating findings and
  logged-out for everything else
- once scheduled, a termination is never cancelled and never scheduled twice
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import InvalidTransition, NotFound
from ..models import EventType, SessionStatus, Severity, utcnow
from ..utils.logging import log_critical_event, log_violation
from .event_bus import MonitorEvent
from .scheduling import Scheduler

logger = logging.getLogger(__name__)

Terminate = Callable[[str, str, SessionStatus], object]
Notify = Callable[[str, str, str], object]


@dataclass(frozen=True)
class Violation:
    violation_type: str
    details: str
    severity: Severity
    timestamp: datetime = field(default_factory=utcnow)


class EscalationPolicy:
    """
    Tracks violations per session and schedules forced termination.

    Args:
        scheduler: Timer source for the grace period
        terminate: Called as terminate(session_id, reason, target_status)
        grace_seconds: Delay between the decision and the termination
        max_violations: Violation count that triggers termination
        notify: Optional callback notify(session_id, level, message) for student notices
    """

    DEFAULT_GRACE_SECONDS = 3.0
    DEFAULT_MAX_VIOLATIONS = 5
    CHEATING_TYPES = frozenset({EventType.CHEATING_DETECTED.value})

    def __init__(
        self,
        scheduler: Scheduler,
        terminate: Terminate,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        max_violations: int = DEFAULT_MAX_VIOLATIONS,
        notify: Optional[Notify] = None,
    ):
        self.scheduler = scheduler
        self.terminate = terminate
        self.grace_seconds = grace_seconds
        self.max_violations = max_violations
        self.notify = notify

        self._lock = threading.Lock()
        self._ledgers: Dict[str, List[Violation]] = {}
        self._scheduled: Dict[str, Tuple[SessionStatus, str]] = {}
        self.terminations_fired = 0

    # ============== Recording ==============

    def record(self, session_id: str, violation_type: str, details: str, severity: Severity) -> Violation:
        """Add a violation to the session ledger and escalate if a rule is met."""
        violation = Violation(violation_type=violation_type, details=details, severity=Severity(severity))

        with self._lock:
            ledger = self._ledgers.setdefault(session_id, [])
            ledger.append(violation)
            total = len(ledger)
            already_scheduled = session_id in self._scheduled

            decision: Optional[str] = None
            if not already_scheduled:
                if violation.severity is Severity.CRITICAL:
                    decision = f"Critical violation: {details}"
                elif total >= self.max_violations:
                    decision = f"Maximum violations reached ({total})"

            if decision is not None:
                target = (
                    SessionStatus.CHEATING_DETECTED
                    if violation_type in self.CHEATING_TYPES
                    else SessionStatus.LOGGED_OUT
                )
                self._scheduled[session_id] = (target, decision)

        log_violation(session_id, violation_type, violation.severity.value, total)
        self._notify(session_id, "warning", f"Security violation detected: {details}")

        if decision is not None:
            self._schedule(session_id, decision, target)

        return violation

    def on_monitor_event(self, session_id: str, event: MonitorEvent) -> None:
        """Event bus subscriber; only escalating findings are counted."""
        if not event.escalate:
            return
        self.record(session_id, event.event_type, event.details, event.severity or Severity.MEDIUM)

    def request_forced_logout(self, session_id: str, reason: str) -> Violation:
        """Force a logout through the normal grace period."""
        return self.record(session_id, EventType.FORCED_LOGOUT.value, reason, Severity.CRITICAL)

    def report_cheating(self, session_id: str, reason: str) -> Violation:
        """Confirmed cheating; terminates as cheating-detected after the grace period."""
        return self.record(session_id, EventType.CHEATING_DETECTED.value, reason, Severity.CRITICAL)

    # ============== Termination ==============

    def _schedule(self, session_id: str, reason: str, target: SessionStatus) -> None:
        log_critical_event(
            session_id,
            "termination_scheduled",
            {"target": target.value, "reason": reason, "grace_seconds": self.grace_seconds},
        )
        self._notify(
            session_id,
            "critical",
            f"Your session will be terminated in {self.grace_seconds:.0f} seconds: {reason}",
        )
        self.scheduler.call_later(self.grace_seconds, lambda: self._fire(session_id, reason, target))

    def _fire(self, session_id: str, reason: str, target: SessionStatus) -> None:
        try:
            self.terminate(session_id, reason, target)
            self.terminations_fired += 1
        except InvalidTransition as e:
            logger.info(f"[ESCALATION] session={session_id} already ended, termination skipped: {e.message}")
        except NotFound:
            logger.warning(f"[ESCALATION] session={session_id} not found, termination skipped")
        finally:
            self.forget(session_id)

    def _notify(self, session_id: str, level: str, message: str) -> None:
        if self.notify is not None:
            self.notify(session_id, level, message)

    # ============== Queries ==============

    def violations(self, session_id: str) -> List[Violation]:
        with self._lock:
            return list(self._ledgers.get(session_id, ()))

    def is_termination_scheduled(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._scheduled

    def scheduled_target(self, session_id: str) -> Optional[SessionStatus]:
        with self._lock:
            entry = self._scheduled.get(session_id)
            return entry[0] if entry else None

    def forget(self, session_id: str) -> None:
        """Drop all state of a finished session; an already armed timer still fires and is skipped."""
        with self._lock:
            self._ledgers.pop(session_id, None)
            self._scheduled.pop(session_id, None)

    def tracked_sessions(self) -> int:
        with self._lock:
            return len(set(self._ledgers) | set(self._scheduled))
