"""
Tests for the Monitoring Supervisor and Schedulers

Tests:
1. Per-session monitor lifecycle and cancellation
2. Monitor findings reach the event log and live risk
3. Escalation from a monitor finding to forced logout
4. Asyncio scheduler keeps periodic tasks alive after a failing tick
"""
import asyncio

import pytest

from exam_proctoring.models import SessionStatus, Severity
from exam_proctoring.proctor.scheduling import AsyncioScheduler


def _logged_types(container, session_id):
    return [event.event_type for event in container.event_log.read(session_id).events]


class TestMonitoringLifecycle:
    """start_monitoring / stop_monitoring"""

    def test_start_builds_all_monitors(self, container, open_exam, student, scheduler):
        """Every monitor is running after start"""
        session, _ = container.state_machine.start(student, open_exam.id)

        context = container.supervisor.start_monitoring(session.id)

        assert set(context.monitors) == {"face", "audio", "visibility", "network", "browser-security"}
        assert all(monitor.is_running for monitor in context.monitors.values())
        assert len(context.tokens) == 5
        assert scheduler.pending > 0

    def test_start_is_idempotent(self, container, open_exam, student):
        """Starting twice returns the same context"""
        session, _ = container.state_machine.start(student, open_exam.id)

        first = container.supervisor.start_monitoring(session.id)
        second = container.supervisor.start_monitoring(session.id)

        assert first is second
        assert container.supervisor.active_sessions() == [session.id]

    def test_stop_cancels_everything(self, container, open_exam, student, scheduler):
        """No timer survives stop_monitoring"""
        session, _ = container.state_machine.start(student, open_exam.id)
        context = container.supervisor.start_monitoring(session.id)
        context.visibility.focus_lost()

        assert container.supervisor.stop_monitoring(session.id) is True

        assert scheduler.pending == 0
        assert all(token.cancelled for token in context.tokens)
        assert not any(monitor.is_running for monitor in context.monitors.values())
        assert context.bus.closed
        assert container.supervisor.stop_monitoring(session.id) is False

    def test_sessions_are_isolated(self, container, open_exam, student, other_student):
        """Stopping one session leaves the other running"""
        first, _ = container.state_machine.start(student, open_exam.id)
        second, _ = container.state_machine.start(other_student, open_exam.id)
        container.supervisor.start_monitoring(first.id)
        other = container.supervisor.start_monitoring(second.id)

        container.supervisor.stop_monitoring(first.id)

        assert not container.supervisor.is_monitoring(first.id)
        assert container.supervisor.is_monitoring(second.id)
        assert all(monitor.is_running for monitor in other.monitors.values())

    def test_submit_stops_monitoring(self, container, open_exam, student):
        """A terminal transition tears the monitors down"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.supervisor.start_monitoring(session.id)

        container.state_machine.submit(student, session.id, {})

        assert not container.supervisor.is_monitoring(session.id)

    def test_restart_keeps_violations(self, container, open_exam, student):
        """Stopping monitoring mid-exam does not reset the violation count"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.supervisor.start_monitoring(session.id)
        for i in range(4):
            container.escalation.record(session.id, "browser-security", f"finding {i}", Severity.MEDIUM)

        container.supervisor.stop_monitoring(session.id)
        container.supervisor.start_monitoring(session.id)
        container.escalation.record(session.id, "browser-security", "finding 4", Severity.MEDIUM)

        assert len(container.escalation.violations(session.id)) == 5
        assert container.escalation.is_termination_scheduled(session.id)

    @pytest.mark.asyncio
    async def test_client_contact_recorded(self, container, open_exam, student, scheduler):
        """Client requests refresh the contact time of the session"""
        session, _ = container.state_machine.start(student, open_exam.id)
        context = container.supervisor.start_monitoring(session.id)
        connectivity = context.sources.connectivity

        await scheduler.advance(45)
        assert connectivity.seconds_since_contact() == pytest.approx(45.0)

        container.supervisor.record_client_contact(session.id)
        assert connectivity.seconds_since_contact() == 0


class TestMonitorFindings:
    """Findings flow into the log and the live risk view"""

    def test_tab_switch_logged_and_scored(self, container, open_exam, student):
        """A visibility finding is appended and scored"""
        session, _ = container.state_machine.start(student, open_exam.id)
        context = container.supervisor.start_monitoring(session.id)

        context.visibility.focus_lost()

        assert _logged_types(container, session.id) == ["tab-switch"]
        risk = container.supervisor.live_risk(session.id)
        assert risk.tab_switches == 1
        assert risk.risk_score == 20

    @pytest.mark.asyncio
    async def test_face_finding_logged(self, container, open_exam, student, scheduler):
        """Periodic face samples reach the log"""
        session, _ = container.state_machine.start(student, open_exam.id)
        context = container.supervisor.start_monitoring(session.id)
        context.sources.camera.submit_face_count(2)

        await scheduler.advance(10)

        assert "multiple-faces" in _logged_types(container, session.id)
        assert container.supervisor.live_risk(session.id).multiple_faces == 1

    def test_client_events_fold_into_live_risk(self, container, open_exam, student):
        """Client-logged flagged events update the live view"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.supervisor.start_monitoring(session.id)

        container.supervisor.observe_client_event(session.id, "mic-activity")
        container.supervisor.observe_client_event(session.id, "page-loaded")

        risk = container.supervisor.live_risk(session.id)
        assert risk.mic_activity == 1
        assert risk.total_violations == 1

    @pytest.mark.asyncio
    async def test_degraded_camera_does_not_affect_other_monitors(self, container, open_exam, student, scheduler):
        """A failed sensor silences only its own monitor"""
        session, _ = container.state_machine.start(student, open_exam.id)
        context = container.supervisor.start_monitoring(session.id)
        context.sources.camera.mark_unavailable("NotAllowedError")

        await scheduler.advance(10)
        context.visibility.focus_lost()

        assert _logged_types(container, session.id) == ["camera-access-denied", "tab-switch"]
        assert context.face.degraded
        assert context.visibility.is_running

    @pytest.mark.asyncio
    async def test_security_finding_escalates_to_logout(self, container, open_exam, student, scheduler):
        """Disabled camera -> critical finding -> forced logout after the grace period"""
        session, _ = container.state_machine.start(student, open_exam.id)
        context = container.supervisor.start_monitoring(session.id)
        context.sources.devices.update(camera_enabled=False)

        await scheduler.advance(30)
        assert container.escalation.is_termination_scheduled(session.id)
        assert container.state_machine.get_session(session.id).status is SessionStatus.IN_PROGRESS

        await scheduler.advance(3)

        ended = container.state_machine.get_session(session.id)
        assert ended.status is SessionStatus.LOGGED_OUT
        assert _logged_types(container, session.id) == ["camera-disabled", "forced-logout"]
        assert not container.supervisor.is_monitoring(session.id)
        assert all(token.cancelled for token in context.tokens)
        assert container.escalation.tracked_sessions() == 0

        levels = [n.level for n in container.notifications.drain(session.id)]
        assert levels == ["warning", "critical", "critical"]


class TestAsyncioScheduler:
    """Production scheduler on a real event loop"""

    @pytest.mark.asyncio
    async def test_failing_tick_does_not_stop_loop(self):
        """An exception in one tick is logged and the next tick still runs"""
        scheduler = AsyncioScheduler()
        calls = []

        def tick():
            calls.append(scheduler.now())
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        handle = scheduler.call_every(0.01, tick)
        await asyncio.sleep(0.1)
        handle.cancel()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_call_later_cancel(self):
        """Cancelled timers never fire"""
        scheduler = AsyncioScheduler()
        fired = []

        handle = scheduler.call_later(0.02, lambda: fired.append(True))
        handle.cancel()
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_async_callback(self):
        """Coroutine callbacks are awaited"""
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()

        async def callback():
            fired.set()

        scheduler.call_later(0.01, callback)

        await asyncio.wait_for(fired.wait(), timeout=1)


class TestNotificationRetention:
    """Notice queues of finished sessions are dropped"""

    @pytest.mark.asyncio
    async def test_queue_discarded_after_retention(self, container, open_exam, student, scheduler):
        """Undrained notices survive the retention delay, then go away"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.supervisor.start_monitoring(session.id)

        container.state_machine.force_terminate(session.id, "Proctor decision", SessionStatus.LOGGED_OUT)
        assert container.notifications.pending_sessions() == 1

        await scheduler.advance(container.config.NOTIFICATION_RETENTION_SECONDS - 1)
        assert container.notifications.pending_sessions() == 1

        await scheduler.advance(1)
        assert container.notifications.pending_sessions() == 0
        assert container.notifications.drain(session.id) == []

    def test_drained_queue_removed(self, container):
        """Draining leaves no empty queue behind"""
        container.notifications.post("s1", "warning", "Security violation detected: x")

        assert [n.level for n in container.notifications.drain("s1")] == ["warning"]
        assert container.notifications.pending_sessions() == 0
