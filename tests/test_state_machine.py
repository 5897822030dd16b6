"""
Tests for the Session State Machine

Tests:
1. Start, resume and availability window
2. Save answers and submit
3. Forced termination and terminal listeners
4. Read access per role
5. Concurrent submit / terminate
"""
import threading
from datetime import timedelta

import pytest

from exam_proctoring.errors import (
    AccessDenied,
    InvalidTransition,
    NotAvailable,
    NotFound,
    ValidationError,
)
from exam_proctoring.models import Exam, SessionStatus, utcnow


class TestStart:
    """Starting an attempt"""

    def test_start_creates_session(self, container, open_exam, student):
        """A first start creates an in-progress session"""
        session, created = container.state_machine.start(student, open_exam.id)

        assert created is True
        assert session.status is SessionStatus.IN_PROGRESS
        assert session.student_id == student.user_id
        assert session.end_time is None
        assert session.answers == {}

    def test_start_reuses_in_progress_session(self, container, open_exam, student):
        """Starting again returns the same attempt"""
        first, _ = container.state_machine.start(student, open_exam.id)
        second, created = container.state_machine.start(student, open_exam.id)

        assert created is False
        assert second.id == first.id

    def test_start_after_submit_creates_new_attempt(self, container, open_exam, student):
        """A submitted attempt is not resumed"""
        first, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.submit(student, first.id, {})

        second, created = container.state_machine.start(student, open_exam.id)

        assert created is True
        assert second.id != first.id

    def test_start_unknown_exam(self, container, student):
        """Unknown exam raises NotFound"""
        with pytest.raises(NotFound):
            container.state_machine.start(student, "no-such-exam")

    def test_start_outside_window(self, container, closed_exam, student):
        """Closed exam raises NotAvailable"""
        with pytest.raises(NotAvailable):
            container.state_machine.start(student, closed_exam.id)

    def test_start_before_window(self, container, student):
        """Exam that has not opened yet raises NotAvailable"""
        now = utcnow()
        container.exams.register(Exam(
            id="exam-future", title="Later", created_by="teacher-1",
            start_time=now + timedelta(hours=1), end_time=now + timedelta(hours=2),
        ))

        with pytest.raises(NotAvailable):
            container.state_machine.start(student, "exam-future")

    def test_concurrent_starts_create_one_session(self, file_container, student):
        """Parallel starts for the same pair converge on one attempt"""
        results = []

        def start():
            results.append(file_container.state_machine.start(student, "exam-open"))

        threads = [threading.Thread(target=start) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({session.id for session, _ in results}) == 1
        assert sum(1 for _, created in results if created) == 1


class TestAnswersAndSubmit:
    """Autosave and submission"""

    def test_save_answers_replaces_map(self, container, open_exam, student):
        """Each save replaces the whole answer map"""
        session, _ = container.state_machine.start(student, open_exam.id)

        container.state_machine.save_answers(student, session.id, {"q1": "a", "q2": ["b", "c"]})
        container.state_machine.save_answers(student, session.id, {"q3": "d"})

        stored = container.state_machine.get_session(session.id)
        assert list(stored.answers) == ["q3"]
        assert stored.answers["q3"].value == "d"

    def test_save_answers_by_other_student(self, container, open_exam, student, other_student):
        """Only the owner can save"""
        session, _ = container.state_machine.start(student, open_exam.id)

        with pytest.raises(AccessDenied):
            container.state_machine.save_answers(other_student, session.id, {"q1": "a"})

    def test_submit_sets_end_time(self, container, open_exam, student):
        """Submit stores answers, end time and status"""
        session, _ = container.state_machine.start(student, open_exam.id)

        submitted = container.state_machine.submit(student, session.id, {"q1": "a"})

        assert submitted.status is SessionStatus.SUBMITTED
        assert submitted.end_time is not None
        assert submitted.end_time >= submitted.start_time
        assert submitted.answers["q1"].value == "a"

    def test_submit_twice(self, container, open_exam, student):
        """Second submit is an invalid transition"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.submit(student, session.id, {})

        with pytest.raises(InvalidTransition):
            container.state_machine.submit(student, session.id, {})

    def test_save_after_submit(self, container, open_exam, student):
        """Answers are frozen after submit"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.submit(student, session.id, {"q1": "a"})

        with pytest.raises(InvalidTransition):
            container.state_machine.save_answers(student, session.id, {"q1": "b"})

        assert container.state_machine.get_session(session.id).answers["q1"].value == "a"

    def test_submit_unknown_session(self, container, student):
        """Unknown session raises NotFound"""
        with pytest.raises(NotFound):
            container.state_machine.submit(student, "missing", {})


class TestForcedTermination:
    """System and reviewer termination"""

    def test_force_terminate_logs_then_transitions(self, container, open_exam, student):
        """A termination record is appended and the status set"""
        session, _ = container.state_machine.start(student, open_exam.id)

        ended = container.state_machine.force_terminate(
            session.id, "Multiple faces confirmed", SessionStatus.CHEATING_DETECTED
        )

        assert ended.status is SessionStatus.CHEATING_DETECTED
        assert ended.end_time is not None
        events = container.event_log.read(session.id).events
        assert events[-1].event_type == "cheating-detected"
        assert events[-1].details == "Multiple faces confirmed"

    def test_force_logout_event_type(self, container, open_exam, student):
        """Logged-out terminations write forced-logout"""
        session, _ = container.state_machine.start(student, open_exam.id)

        container.state_machine.force_terminate(session.id, "Camera disabled", SessionStatus.LOGGED_OUT)

        assert container.event_log.read(session.id).events[-1].event_type == "forced-logout"

    def test_force_terminate_into_submitted_rejected(self, container, open_exam, student):
        """Submitted is not a forced-termination target"""
        session, _ = container.state_machine.start(student, open_exam.id)

        with pytest.raises(ValidationError):
            container.state_machine.force_terminate(session.id, "x", SessionStatus.SUBMITTED)

    def test_force_terminate_after_submit(self, container, open_exam, student):
        """Terminal sessions stay terminal"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.submit(student, session.id, {})

        with pytest.raises(InvalidTransition):
            container.state_machine.force_terminate(session.id, "late", SessionStatus.LOGGED_OUT)

        assert container.state_machine.get_session(session.id).status is SessionStatus.SUBMITTED

    def test_terminal_listeners_notified(self, container, open_exam, student):
        """Listeners see every terminal transition; a failing one is isolated"""
        seen = []

        def broken(session):
            raise RuntimeError("listener failure")

        container.state_machine.add_terminal_listener(broken)
        container.state_machine.add_terminal_listener(lambda s: seen.append(s.status))

        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.submit(student, session.id, {})

        assert seen == [SessionStatus.SUBMITTED]

    def test_concurrent_submit_and_terminate(self, file_container, student):
        """Exactly one of submit / terminate wins"""
        container = file_container
        session, _ = container.state_machine.start(student, "exam-open")
        outcomes = []
        barrier = threading.Barrier(2)

        def submit():
            barrier.wait()
            try:
                container.state_machine.submit(student, session.id, {"q1": "a"})
                outcomes.append("submitted")
            except InvalidTransition:
                outcomes.append("rejected")

        def terminate():
            barrier.wait()
            try:
                container.state_machine.force_terminate(session.id, "x", SessionStatus.LOGGED_OUT)
                outcomes.append("terminated")
            except InvalidTransition:
                outcomes.append("rejected")

        threads = [threading.Thread(target=submit), threading.Thread(target=terminate)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes).count("rejected") == 1
        final = container.state_machine.get_session(session.id)
        assert final.status in (SessionStatus.SUBMITTED, SessionStatus.LOGGED_OUT)


class TestReadAccess:
    """Who may read a session"""

    def test_owner_student(self, container, open_exam, student):
        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.check_read_access(student, session)

    def test_other_student_denied(self, container, open_exam, student, other_student):
        session, _ = container.state_machine.start(student, open_exam.id)

        with pytest.raises(AccessDenied):
            container.state_machine.check_read_access(other_student, session)

    def test_exam_owner_teacher(self, container, open_exam, student, teacher):
        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.check_read_access(teacher, session)

    def test_other_teacher_denied_with_detail(self, container, open_exam, student, other_teacher):
        """Reviewer-facing message says why"""
        session, _ = container.state_machine.start(student, open_exam.id)

        with pytest.raises(AccessDenied) as exc_info:
            container.state_machine.check_read_access(other_teacher, session)

        assert "not the owner" in exc_info.value.message

    def test_admin_reads_everything(self, container, open_exam, student, admin):
        session, _ = container.state_machine.start(student, open_exam.id)
        container.state_machine.check_read_access(admin, session)
