"""
Domain models for exam sessions and proctoring events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_ms(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


# ============== Enums ==============

class SessionStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    SUBMITTED = "submitted"
    CHEATING_DETECTED = "cheating-detected"
    LOGGED_OUT = "logged-out"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_PROGRESS


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    SYSTEM = "system"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventType(str, Enum):
    """Event types produced by the monitors or the state machine.

    The log accepts any non-empty type string; this enum names the ones the
    service itself emits or scores.
    """
    # Scored / flagged
    FACE_NOT_VISIBLE = "face-not-visible"
    MULTIPLE_FACES = "multiple-faces"
    MIC_ACTIVITY = "mic-activity"
    TAB_SWITCH = "tab-switch"
    OFF_SCREEN = "off-screen"
    CHEATING_DETECTED = "cheating-detected"
    SCREENSHOT_CAPTURED = "screenshot-captured"

    # Face / audio patterns
    CHEATING_PATTERN_DETECTED = "cheating-pattern-detected"
    AUDIO_CHEATING_PATTERN = "audio-cheating-pattern"
    SILENCE_PERIOD = "silence-period"
    CAMERA_ACCESS_DENIED = "camera-access-denied"
    MICROPHONE_ACCESS_DENIED = "microphone-access-denied"
    AUDIO_INIT_FAILED = "audio-init-failed"

    # Visibility
    TAB_RETURN = "tab-return"

    # Network
    NETWORK_QUALITY_CHANGED = "network-quality-changed"
    NETWORK_DISCONNECTED = "network-disconnected"
    NETWORK_RESTORED = "network-restored"

    # Browser security
    CAMERA_DISABLED = "camera-disabled"
    MICROPHONE_DISABLED = "microphone-disabled"
    BROWSER_SECURITY = "browser-security"
    INACTIVITY_TIMEOUT = "inactivity-timeout"
    FORCED_LOGOUT = "forced-logout"
    MAX_VIOLATIONS_REACHED = "max-violations-reached"

    # Monitoring lifecycle
    MONITORING_STARTED = "monitoring-started"
    MONITORING_STOPPED = "monitoring-stopped"


FLAGGED_EVENT_TYPES = frozenset({
    EventType.FACE_NOT_VISIBLE.value,
    EventType.MULTIPLE_FACES.value,
    EventType.TAB_SWITCH.value,
    EventType.CHEATING_DETECTED.value,
    EventType.MIC_ACTIVITY.value,
})


# ============== Identity ==============

@dataclass(frozen=True)
class Identity:
    """Request-scoped caller identity."""
    user_id: str
    role: Role

    @property
    def is_reviewer(self) -> bool:
        return self.role in (Role.ADMIN, Role.TEACHER)


SYSTEM_IDENTITY = Identity(user_id="system", role=Role.SYSTEM)


# ============== Records ==============

@dataclass(frozen=True)
class Exam:
    """Exam record owned by the authoring service; read-only here."""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    created_by: str
    description: str = ""

    def is_open(self, now: datetime) -> bool:
        return self.start_time <= now <= self.end_time


@dataclass
class Answer:
    value: Any
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "score": self.score}


@dataclass(frozen=True)
class ProctoringEvent:
    """A single timestamped observation. Immutable once appended."""
    event_type: str
    details: str
    timestamp: datetime = field(default_factory=utcnow)
    snapshot_ref: Optional[str] = None
    severity: Optional[Severity] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "timestamp": isoformat_ms(self.timestamp),
            "eventType": self.event_type,
            "details": self.details,
        }
        if self.snapshot_ref:
            data["snapshotRef"] = self.snapshot_ref
        if self.severity:
            data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProctoringEvent":
        timestamp = datetime.fromisoformat(data["timestamp"].rstrip("Z"))
        severity = data.get("severity")
        return cls(
            event_type=data["eventType"],
            details=data["details"],
            timestamp=timestamp,
            snapshot_ref=data.get("snapshotRef"),
            severity=Severity(severity) if severity else None,
        )


@dataclass(frozen=True)
class LogEntry:
    seq: int
    event: ProctoringEvent

    @property
    def readable(self) -> bool:
        return True


@dataclass(frozen=True)
class UnreadableEntry:
    """Placeholder for a record that failed decryption or parsing."""
    seq: int
    reason: str

    @property
    def readable(self) -> bool:
        return False


LogRecord = Union[LogEntry, UnreadableEntry]


@dataclass
class ExamSession:
    id: str
    student_id: str
    exam_id: str
    start_time: datetime
    status: SessionStatus = SessionStatus.IN_PROGRESS
    end_time: Optional[datetime] = None
    answers: Dict[str, Answer] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "examId": self.exam_id,
            "startTime": isoformat_ms(self.start_time),
            "endTime": isoformat_ms(self.end_time) if self.end_time else None,
            "status": self.status.value,
            "answers": [
                {"questionId": question_id, "studentAnswer": answer.value, "score": answer.score}
                for question_id, answer in self.answers.items()
            ],
            "createdAt": isoformat_ms(self.created_at),
        }


def answers_from_mapping(raw: Dict[str, Any]) -> Dict[str, Answer]:
    """Build an ordered answer map from a questionId -> answer mapping."""
    return {str(question_id): Answer(value=value) for question_id, value in raw.items()}
