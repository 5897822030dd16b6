"""
Session State Machine - the only writer of session status, answers and end time

States:
    in-progress -> submitted          (student submit)
    in-progress -> cheating-detected  (forced termination)
    in-progress -> logged-out         (forced termination)

All non-initial states are terminal. Every mutation runs under the
session's lock, so concurrent submit / terminate / autosave calls resolve
in lock acquisition order and the loser sees InvalidTransition.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

from sqlalchemy.exc import IntegrityError

from ..errors import AccessDenied, InvalidTransition, NotAvailable, NotFound, ValidationError
from ..models import (
    SYSTEM_IDENTITY,
    EventType,
    ExamSession,
    Identity,
    ProctoringEvent,
    Role,
    SessionStatus,
    Severity,
    answers_from_mapping,
    utcnow,
)
from ..utils.logging import log_session_end, log_session_start
from .event_log import EventLog
from .exam_directory import ExamDirectory
from .locks import LockRegistry
from .session_repository import SessionRepository

logger = logging.getLogger(__name__)

TerminalListener = Callable[[ExamSession], None]


class SessionStateMachine:
    """
    Owns the exam attempt lifecycle.

    Args:
        repository: Session persistence
        exams: Exam directory for availability windows and ownership
        event_log: Log that receives termination records
        locks: Per-session lock registry shared with the event log
        now: Clock returning naive UTC datetimes
    """

    TERMINATION_TARGETS = (SessionStatus.CHEATING_DETECTED, SessionStatus.LOGGED_OUT)

    def __init__(
        self,
        repository: SessionRepository,
        exams: ExamDirectory,
        event_log: EventLog,
        locks: LockRegistry,
        now: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.exams = exams
        self.event_log = event_log
        self.locks = locks
        self.now = now
        self._terminal_listeners: List[TerminalListener] = []

    def add_terminal_listener(self, listener: TerminalListener) -> None:
        """Register a callback invoked after any transition into a terminal state."""
        self._terminal_listeners.append(listener)

    # ============== Queries ==============

    def get_session(self, session_id: str) -> ExamSession:
        session = self.repository.get_session(session_id)
        if session is None:
            raise NotFound("Exam session not found")
        return session

    def check_read_access(self, identity: Identity, session: ExamSession) -> None:
        """
        Enforce who may read a session.

        Admins read everything, teachers read sessions of exams they created,
        students read their own sessions.
        """
        if identity.role is Role.ADMIN or identity.role is Role.SYSTEM:
            return
        if identity.role is Role.TEACHER:
            exam = self.exams.get(session.exam_id)
            if exam is None or exam.created_by != identity.user_id:
                raise AccessDenied("Access denied: not the owner of this exam")
            return
        if identity.user_id != session.student_id:
            raise AccessDenied()

    # ============== Student operations ==============

    def start(self, identity: Identity, exam_id: str) -> Tuple[ExamSession, bool]:
        """
        Start (or resume) an attempt.

        Returns:
            (session, created) where created is False when an in-progress
            attempt for the same student and exam already existed

        Raises:
            NotFound: exam does not exist
            NotAvailable: current time is outside the exam window
        """
        exam = self.exams.get(exam_id)
        if exam is None:
            raise NotFound("Exam not found")

        now = self.now()
        if not exam.is_open(now):
            raise NotAvailable()

        with self.locks.get(("start", identity.user_id, exam_id)):
            existing = self.repository.find_in_progress(identity.user_id, exam_id)
            if existing is not None:
                logger.info(f"[SESSION] Resuming session {existing.id} for student {identity.user_id}")
                return existing, False

            session = ExamSession(
                id=uuid.uuid4().hex,
                student_id=identity.user_id,
                exam_id=exam_id,
                start_time=now,
                status=SessionStatus.IN_PROGRESS,
                created_at=now,
            )
            try:
                self.repository.insert_session(session)
            except IntegrityError:
                # Another process won the race; the unique index kept one row.
                existing = self.repository.find_in_progress(identity.user_id, exam_id)
                if existing is None:
                    raise
                return existing, False

        log_session_start(session.id, exam_id, identity.user_id)
        return session, True

    def save_answers(self, identity: Identity, session_id: str, answers: Dict[str, Any]) -> ExamSession:
        """Replace the whole answer map of an in-progress session."""
        with self.locks.get(session_id):
            session = self._load_owned(identity, session_id)
            self._require_in_progress(session, "save answers")
            session.answers = answers_from_mapping(answers)
            self.repository.update_session(session)
        return session

    def submit(self, identity: Identity, session_id: str, answers: Dict[str, Any]) -> ExamSession:
        """Store final answers and move the session to submitted."""
        with self.locks.get(session_id):
            session = self._load_owned(identity, session_id)
            self._require_in_progress(session, "submit")
            session.answers = answers_from_mapping(answers)
            session.end_time = self.now()
            session.status = SessionStatus.SUBMITTED
            self.repository.update_session(session)

        log_session_end(session.id, session.status.value)
        self._notify_terminal(session)
        return session

    # ============== Forced termination ==============

    def force_terminate(self, session_id: str, reason: str, target_status: SessionStatus) -> ExamSession:
        """
        End an in-progress session on behalf of the system or a reviewer.

        The termination record is appended to the log before the status
        changes, inside the same critical section.

        Raises:
            ValidationError: target_status is not a forced-termination state
            NotFound: session does not exist
            InvalidTransition: session is already terminal
        """
        target_status = SessionStatus(target_status)
        if target_status not in self.TERMINATION_TARGETS:
            raise ValidationError(f"Cannot force-terminate into '{target_status.value}'")

        with self.locks.get(session_id):
            session = self.get_session(session_id)
            self._require_in_progress(session, "terminate")

            event_type = (
                EventType.CHEATING_DETECTED
                if target_status is SessionStatus.CHEATING_DETECTED
                else EventType.FORCED_LOGOUT
            )
            self.event_log.append(
                SYSTEM_IDENTITY,
                session_id,
                ProctoringEvent(
                    event_type=event_type.value,
                    details=reason or "Session terminated",
                    severity=Severity.CRITICAL,
                ),
            )

            session.end_time = self.now()
            session.status = target_status
            self.repository.update_session(session)

        log_session_end(session.id, session.status.value, reason)
        self._notify_terminal(session)
        return session

    # ============== Internals ==============

    def _load_owned(self, identity: Identity, session_id: str) -> ExamSession:
        session = self.get_session(session_id)
        if identity.user_id != session.student_id:
            raise AccessDenied()
        return session

    def _require_in_progress(self, session: ExamSession, action: str) -> None:
        if session.is_terminal:
            raise InvalidTransition(
                f"Cannot {action}: session is already {session.status.value}"
            )

    def _notify_terminal(self, session: ExamSession) -> None:
        for listener in list(self._terminal_listeners):
            try:
                listener(session)
            except Exception as e:
                logger.error(f"[SESSION] Terminal listener failed for {session.id}: {e}", exc_info=True)
