"""
Risk Scorer - Computes a 0-100 risk score from a session's proctoring log

Formula:
    raw = 0.2 * tab_switches
        + 0.3 * face_not_visible
        + 0.4 * multiple_faces        (multiple-faces or cheating-detected)
        + 0.1 * mic_activity
    risk_score = round(min(raw, 1.0) * 100)

Pure functions over the event list; nothing is cached between calls.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from ...models import FLAGGED_EVENT_TYPES, EventType, LogEntry, ProctoringEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskAnalysis:
    """Derived per-session analytics; never persisted."""
    tab_switches: int
    face_not_visible: int
    multiple_faces: int
    mic_activity: int
    risk_score: int
    total_violations: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "tabSwitches": self.tab_switches,
            "faceNotVisible": self.face_not_visible,
            "multipleFaces": self.multiple_faces,
            "micActivity": self.mic_activity,
            "riskScore": self.risk_score,
            "totalViolations": self.total_violations,
        }


class RiskScorer:
    """
    Scores proctoring logs.

    Weights apply per occurrence; the raw sum is capped at 1.0 before
    scaling, so a handful of events can saturate the score.
    """

    WEIGHTS: Dict[str, float] = {
        "tab_switches": 0.2,
        "face_not_visible": 0.3,
        "multiple_faces": 0.4,
        "mic_activity": 0.1,
    }

    # Lower bounds for each risk level
    LEVELS = (
        (85, "critical"),
        (60, "high"),
        (30, "medium"),
        (0, "low"),
    )

    def count(self, events: Iterable[Any]) -> Dict[str, int]:
        """Count scored categories; accepts events or log records."""
        counts = {name: 0 for name in self.WEIGHTS}
        for item in events:
            event_type = _event_type(item)
            if event_type is None:
                continue
            if event_type == EventType.TAB_SWITCH.value:
                counts["tab_switches"] += 1
            elif event_type == EventType.FACE_NOT_VISIBLE.value:
                counts["face_not_visible"] += 1
            elif event_type in (EventType.MULTIPLE_FACES.value, EventType.CHEATING_DETECTED.value):
                counts["multiple_faces"] += 1
            elif event_type == EventType.MIC_ACTIVITY.value:
                counts["mic_activity"] += 1
        return counts

    def score(self, events: Iterable[Any]) -> RiskAnalysis:
        """
        Compute the risk analysis for a session log.

        Args:
            events: ProctoringEvents or log records; unreadable records are skipped

        Returns:
            RiskAnalysis with counts, risk_score (0-100) and total_violations
        """
        counts = self.count(events)
        raw = sum(self.WEIGHTS[name] * value for name, value in counts.items())
        risk_score = round(min(raw, 1.0) * 100)

        return RiskAnalysis(
            tab_switches=counts["tab_switches"],
            face_not_visible=counts["face_not_visible"],
            multiple_faces=counts["multiple_faces"],
            mic_activity=counts["mic_activity"],
            risk_score=int(risk_score),
            total_violations=sum(counts.values()),
        )

    def compute_breakdown(self, events: Iterable[Any]) -> Dict[str, Any]:
        """
        Per-category contribution to the uncapped raw score.

        Useful for showing reviewers which signal drove the score.
        """
        counts = self.count(events)
        breakdown = {}
        for name, weight in self.WEIGHTS.items():
            breakdown[name] = {
                "count": counts[name],
                "weight": weight,
                "contribution": round(weight * counts[name], 2),
            }
        return breakdown

    def risk_level(self, risk_score: int) -> str:
        for lower_bound, level in self.LEVELS:
            if risk_score >= lower_bound:
                return level
        return "low"

    def is_flagged(self, events: Iterable[Any]) -> bool:
        """True if the log holds any flagged event type."""
        return any(_event_type(item) in FLAGGED_EVENT_TYPES for item in events)


def _event_type(item: Any):
    if isinstance(item, ProctoringEvent):
        return item.event_type
    if isinstance(item, LogEntry):
        return item.event.event_type
    if isinstance(item, str):
        return item
    return None
