"""
Client Signal API - browser observations feeding the session monitors

The exam client posts what it sees (webcam frames, microphone chunks,
visibility and connectivity changes, device heartbeats). Each post feeds
the matching source of the session's monitoring context; the monitors
pick the values up on their own cadence.

Endpoints:
- POST /api/sessions/{id}/signals/frame
- POST /api/sessions/{id}/signals/audio
- POST /api/sessions/{id}/signals/visibility
- POST /api/sessions/{id}/signals/connectivity
- POST /api/sessions/{id}/signals/devices
- POST /api/sessions/{id}/signals/activity
- POST /api/sessions/{id}/monitoring/stop
- GET  /api/sessions/{id}/monitoring
"""

import logging

from fastapi import APIRouter, Depends

from ...errors import InvalidState, ValidationError
from ...models import Identity, Role
from ...proctor.supervisor import MonitoringContext
from ...utils.auth import require_roles
from ..deps import ServiceContainer, get_container
from ..schemas import (
    AudioSignal,
    ConnectivitySignal,
    DeviceSignal,
    FrameSignal,
    SignalResponse,
    VisibilitySignal,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["Proctoring Signals"])

student_only = require_roles(Role.STUDENT)
reviewers_only = require_roles(Role.ADMIN, Role.TEACHER)


def _monitoring_context(identity: Identity, session_id: str, container: ServiceContainer) -> MonitoringContext:
    """Resolve the caller's in-progress session and its monitors, starting them if needed.

    Every signal post counts as contact from the exam client.
    """
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)
    if session.is_terminal:
        raise InvalidState(f"Session is no longer active: {session.status.value}")

    context = container.supervisor.get(session_id)
    if context is None:
        if not container.config.MONITORING_ENABLED:
            raise InvalidState("Monitoring is disabled")
        context = container.supervisor.start_monitoring(session_id)
    context.sources.connectivity.touch()
    return context


# ============== Media Signals ==============

@router.post("/{session_id}/signals/frame", response_model=SignalResponse)
async def submit_frame(
    session_id: str,
    signal: FrameSignal,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """
    Webcam observation.

    Accepts a base64 JPEG/PNG frame (faces are counted server-side), a
    face count computed by the client, or a camera access error.
    """
    context = _monitoring_context(identity, session_id, container)
    camera = context.sources.camera

    if signal.error:
        camera.mark_unavailable(signal.error)
        return SignalResponse(accepted=True, details={"cameraAvailable": False})

    if signal.frame_base64:
        faces = camera.submit_frame_base64(signal.frame_base64)
    elif signal.face_count is not None:
        camera.submit_face_count(signal.face_count)
        faces = signal.face_count
    else:
        raise ValidationError("frameBase64, faceCount or error is required")

    return SignalResponse(accepted=True, details={"faceCount": faces})


@router.post("/{session_id}/signals/audio", response_model=SignalResponse)
async def submit_audio(
    session_id: str,
    signal: AudioSignal,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Microphone observation: base64 int16 PCM, a 0-1 level, or an access error."""
    context = _monitoring_context(identity, session_id, container)
    microphone = context.sources.microphone

    if signal.error:
        microphone.mark_unavailable(signal.error)
        return SignalResponse(accepted=True, details={"microphoneAvailable": False})

    if signal.audio_base64:
        level = microphone.submit_pcm_base64(signal.audio_base64)
    elif signal.level is not None:
        microphone.submit_level(signal.level)
        level = signal.level
    else:
        raise ValidationError("audioBase64, level or error is required")

    return SignalResponse(accepted=True, details={"level": round(level, 4)})


# ============== Browser Signals ==============

@router.post("/{session_id}/signals/visibility", response_model=SignalResponse)
async def submit_visibility(
    session_id: str,
    signal: VisibilitySignal,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Tab visibility change (focus lost or regained)."""
    context = _monitoring_context(identity, session_id, container)
    context.visibility.sample(signal.visible)
    return SignalResponse(
        accepted=True,
        details={"tabSwitches": context.visibility.tab_switch_count, "hidden": context.visibility.hidden},
    )


@router.post("/{session_id}/signals/connectivity", response_model=SignalResponse)
async def submit_connectivity(
    session_id: str,
    signal: ConnectivitySignal,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Online/offline state with the browser's own RTT and downlink estimates."""
    context = _monitoring_context(identity, session_id, container)
    changed = context.sources.connectivity.set_online(
        signal.online,
        downlink_mbps=signal.downlink_mbps,
        rtt_ms=signal.rtt_ms,
    )
    return SignalResponse(accepted=True, details={"changed": changed, "online": signal.online})


@router.post("/{session_id}/signals/devices", response_model=SignalResponse)
async def submit_devices(
    session_id: str,
    signal: DeviceSignal,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Device heartbeat: media-track status, window geometry and extensions."""
    context = _monitoring_context(identity, session_id, container)
    status = context.sources.devices.update(
        camera_enabled=signal.camera,
        microphone_enabled=signal.microphone,
        window_delta_px=signal.window_delta,
        extensions=signal.extensions,
    )
    return SignalResponse(
        accepted=True,
        details={
            "camera": status.camera_enabled,
            "microphone": status.microphone_enabled,
            "extensions": len(status.extensions),
        },
    )


@router.post("/{session_id}/signals/activity", response_model=SignalResponse)
async def submit_activity(
    session_id: str,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """User activity heartbeat (mouse, keyboard, scroll)."""
    context = _monitoring_context(identity, session_id, container)
    context.sources.devices.record_activity()
    return SignalResponse(accepted=True)


# ============== Monitoring Control ==============

@router.post("/{session_id}/monitoring/stop")
async def stop_monitoring(
    session_id: str,
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """
    Stop all monitors of a session. Safe to call more than once.

    The violation count survives; the next client signal restarts monitoring.
    """
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)

    stopped = container.supervisor.stop_monitoring(session_id)
    logger.info(f"[SIGNALS] {identity.role.value} {identity.user_id} stopped monitoring of {session_id}: {stopped}")
    return {"message": "Monitoring stopped" if stopped else "Monitoring was not active", "stopped": stopped}


@router.get("/{session_id}/monitoring")
async def monitoring_status(
    session_id: str,
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """Per-monitor metrics and violation ledger of a session."""
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)

    context = container.supervisor.get(session_id)
    risk = container.supervisor.live_risk(session_id)
    return {
        "sessionId": session_id,
        "active": context is not None,
        "monitors": context.get_metrics() if context else {},
        "liveRisk": risk.to_dict() if risk else None,
        "violations": len(container.escalation.violations(session_id)),
        "terminationScheduled": container.escalation.is_termination_scheduled(session_id),
    }
