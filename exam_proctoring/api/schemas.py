"""
Request/Response models for the exam session API.

Wire names are camelCase; Python attributes are snake_case.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============== Student session operations ==============

class StartSessionRequest(ApiModel):
    """Request to start (or resume) an exam attempt"""
    exam_id: str = Field(..., alias="examId", min_length=1, description="ID of the exam")


class StartSessionResponse(ApiModel):
    message: str
    session_id: str = Field(..., alias="sessionId")
    monitoring: bool = False


class AnswersRequest(ApiModel):
    """Answer map keyed by question id"""
    answers: Dict[str, Any] = Field(..., description="questionId -> answer (string or list)")


class MessageResponse(ApiModel):
    message: str


class SessionEnvelope(ApiModel):
    message: str
    session: Dict[str, Any]


class LogEventRequest(ApiModel):
    """Client-reported proctoring event"""
    event_type: str = Field(..., alias="eventType", min_length=1)
    details: str = Field(..., min_length=1)
    timestamp: Optional[datetime] = Field(None, description="Client timestamp; advisory only")


class LogEventResponse(ApiModel):
    message: str
    recorded: bool
    seq: Optional[int] = None


class NotificationsResponse(ApiModel):
    notifications: List[Dict[str, str]]


# ============== Reviewer operations ==============

class TerminateRequest(ApiModel):
    """Reviewer request to end a session"""
    reason: str = Field(..., min_length=1)
    status: Literal["cheating-detected", "logged-out"] = "logged-out"
    immediate: bool = Field(True, description="False applies the escalation grace period")


class TerminationScheduledResponse(ApiModel):
    message: str
    scheduled: bool
    grace_seconds: float = Field(..., alias="graceSeconds")


# ============== Client signals ==============

class FrameSignal(ApiModel):
    """Webcam observation: a frame, a client-side face count, or an access error"""
    frame_base64: Optional[str] = Field(None, alias="frameBase64")
    face_count: Optional[int] = Field(None, alias="faceCount", ge=0)
    error: Optional[str] = Field(None, description="Camera access error reported by the client")


class AudioSignal(ApiModel):
    """Microphone observation: int16 PCM, a normalized level, or an access error"""
    audio_base64: Optional[str] = Field(None, alias="audioBase64")
    level: Optional[float] = Field(None, ge=0.0, le=1.0)
    error: Optional[str] = None


class VisibilitySignal(ApiModel):
    visible: bool


class ConnectivitySignal(ApiModel):
    online: bool
    downlink_mbps: Optional[float] = Field(None, alias="downlinkMbps", ge=0.0)
    rtt_ms: Optional[float] = Field(None, alias="rttMs", ge=0.0)


class DeviceSignal(ApiModel):
    """Device heartbeat from the exam client"""
    camera: Optional[bool] = None
    microphone: Optional[bool] = None
    window_delta: Optional[int] = Field(None, alias="windowDelta", ge=0)
    extensions: Optional[List[str]] = None


class SignalResponse(ApiModel):
    accepted: bool
    details: Dict[str, Any] = Field(default_factory=dict)
