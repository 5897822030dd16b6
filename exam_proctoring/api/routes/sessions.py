"""
Exam Session API - attempt lifecycle, proctoring log and reviewer reports

Endpoints:
- POST /api/sessions/start - Start or resume an attempt
- PUT  /api/sessions/{id}/save-answers - Autosave answers
- PUT  /api/sessions/{id}/submit - Submit the attempt
- POST /api/sessions/{id}/log-event - Append a client-reported event
- GET  /api/sessions/{id}/notifications - Drain student notices
- GET  /api/sessions - Paginated session list (reviewers)
- GET  /api/sessions/live - In-progress sessions (reviewers)
- GET  /api/sessions/reports - Sessions with risk analytics (reviewers)
- GET  /api/sessions/{id} - Session with its log
- GET  /api/sessions/{id}/export - CSV export of the log (reviewers)
- POST /api/sessions/{id}/terminate - Force-terminate a session (reviewers)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response

from ...errors import InvalidState, InvalidTransition
from ...models import Identity, LogEntry, ProctoringEvent, Role, SessionStatus, utcnow
from ...services.report_exporter import export_csv, export_filename
from ...utils.auth import get_current_identity, require_roles
from ..deps import ServiceContainer, get_container
from ..schemas import (
    AnswersRequest,
    LogEventRequest,
    LogEventResponse,
    MessageResponse,
    NotificationsResponse,
    SessionEnvelope,
    StartSessionRequest,
    StartSessionResponse,
    TerminateRequest,
    TerminationScheduledResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["Exam Sessions"])

student_only = require_roles(Role.STUDENT)
reviewers_only = require_roles(Role.ADMIN, Role.TEACHER)


def _session_detail(container: ServiceContainer, session_id: str, include_monitoring: bool) -> Dict[str, Any]:
    session = container.state_machine.get_session(session_id)
    log = container.event_log.read(session_id)

    data = session.to_dict()
    data["proctoringLogs"] = [
        record.event.to_dict() if isinstance(record, LogEntry)
        else {"seq": record.seq, "unreadable": True, "reason": record.reason}
        for record in log.records
    ]
    data["analytics"] = container.risk_scorer.score(log.records).to_dict()

    if include_monitoring:
        context = container.supervisor.get(session_id)
        data["monitoring"] = context.get_metrics() if context else None
    return data


# ============== Student Endpoints ==============

@router.post("/start", response_model=StartSessionResponse)
async def start_session(
    request: StartSessionRequest,
    response: Response,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """
    Start a new attempt, or return the student's in-progress attempt.

    Responds 201 for a new attempt and 200 when an existing one is reused.
    Monitoring is started for the session in both cases.
    """
    session, created = container.state_machine.start(identity, request.exam_id)

    monitoring = False
    if container.config.MONITORING_ENABLED:
        container.supervisor.start_monitoring(session.id)
        monitoring = True

    response.status_code = 201 if created else 200
    return StartSessionResponse(
        message="Exam session started" if created else "Existing session found",
        session_id=session.id,
        monitoring=monitoring,
    )


@router.put("/{session_id}/save-answers", response_model=MessageResponse)
async def save_answers(
    session_id: str,
    request: AnswersRequest,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Replace the saved answers of an in-progress attempt."""
    container.state_machine.save_answers(identity, session_id, request.answers)
    return MessageResponse(message="Answers saved successfully")


@router.put("/{session_id}/submit", response_model=SessionEnvelope)
async def submit_session(
    session_id: str,
    request: AnswersRequest,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Submit final answers and end the attempt."""
    session = container.state_machine.submit(identity, session_id, request.answers)
    return SessionEnvelope(message="Exam submitted successfully", session=session.to_dict())


@router.post("/{session_id}/log-event", response_model=LogEventResponse)
async def log_event(
    session_id: str,
    request: LogEventRequest,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """
    Append a client-reported proctoring event.

    Events for a session that has already ended are acknowledged but not
    recorded, since the client may still be flushing its queue.
    """
    timestamp = _naive_utc(request.timestamp) or utcnow()

    event = ProctoringEvent(
        event_type=request.event_type,
        details=request.details,
        timestamp=timestamp,
    )

    try:
        seq = container.event_log.append(identity, session_id, event)
    except InvalidState as e:
        logger.warning(f"[SESSIONS] Dropped {request.event_type} for ended session {session_id}: {e.message}")
        return LogEventResponse(message="Session is no longer active; event not recorded", recorded=False)

    container.supervisor.observe_client_event(session_id, request.event_type)
    return LogEventResponse(message="Proctoring event logged", recorded=True, seq=seq)


@router.get("/{session_id}/notifications", response_model=NotificationsResponse)
async def drain_notifications(
    session_id: str,
    identity: Identity = Depends(student_only),
    container: ServiceContainer = Depends(get_container),
):
    """Return and clear pending notices for the student's session."""
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)
    container.supervisor.record_client_contact(session_id)
    notices = container.notifications.drain(session_id)
    return NotificationsResponse(notifications=[n.to_dict() for n in notices])


# ============== Reviewer Endpoints ==============

@router.get("")
async def list_sessions(
    exam_id: Optional[str] = Query(None, alias="examId"),
    status: Optional[SessionStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """List sessions, newest first. Teachers only see their own exams."""
    result = container.reports.list_sessions(
        identity,
        exam_id=exam_id,
        status=status.value if status else None,
        page=page,
        limit=limit,
    )
    return {
        "sessions": [session.to_dict() for session in result.sessions],
        "pagination": result.pagination(),
    }


@router.get("/live")
async def live_sessions(
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """In-progress sessions with their live risk view."""
    sessions = []
    for session in container.reports.live_sessions(identity):
        data = session.to_dict()
        risk = container.supervisor.live_risk(session.id)
        data["liveRisk"] = risk.to_dict() if risk else None
        data["monitoring"] = container.supervisor.is_monitoring(session.id)
        sessions.append(data)
    return {"sessions": sessions}


@router.get("/reports")
async def session_reports(
    exam_id: Optional[str] = Query(None, alias="examId"),
    flagged: bool = Query(False),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """Sessions with risk analytics, optionally only flagged ones."""
    sessions = container.reports.reports(
        identity,
        exam_id=exam_id,
        flagged=flagged,
        start_date=_naive_utc(start_date),
        end_date=_naive_utc(end_date),
    )
    return {"sessions": sessions}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    identity: Identity = Depends(get_current_identity),
    container: ServiceContainer = Depends(get_container),
):
    """Session snapshot with its proctoring log."""
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)
    return {"session": _session_detail(container, session_id, include_monitoring=identity.is_reviewer)}


@router.get("/{session_id}/export")
async def export_session_logs(
    session_id: str,
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """Download the session's proctoring log as CSV."""
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)

    content = export_csv(container.event_log.read(session_id).records)
    logger.info(f"[SESSIONS] {identity.user_id} exported logs of session {session_id}")
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(session_id)}"'},
    )


@router.post("/{session_id}/terminate")
async def terminate_session(
    session_id: str,
    request: TerminateRequest,
    response: Response,
    identity: Identity = Depends(reviewers_only),
    container: ServiceContainer = Depends(get_container),
):
    """
    Force-terminate a session.

    With immediate=false the termination goes through the escalation
    policy, so the student is warned and the session ends after the grace
    period.
    """
    session = container.state_machine.get_session(session_id)
    container.state_machine.check_read_access(identity, session)
    target = SessionStatus(request.status)
    reason = f"{request.reason} (by {identity.role.value} {identity.user_id})"

    if request.immediate:
        session = container.state_machine.force_terminate(session_id, reason, target)
        return SessionEnvelope(message="Session terminated", session=session.to_dict())

    if session.is_terminal:
        raise InvalidTransition(f"Cannot terminate: session is already {session.status.value}")

    if target is SessionStatus.CHEATING_DETECTED:
        container.escalation.report_cheating(session_id, reason)
    else:
        container.escalation.request_forced_logout(session_id, reason)

    response.status_code = 202
    return TerminationScheduledResponse(
        message="Termination scheduled",
        scheduled=True,
        grace_seconds=container.escalation.grace_seconds,
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
