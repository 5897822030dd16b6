"""
Service wiring and FastAPI dependencies.

The container is built once per process on first use. Tests replace it
through app.dependency_overrides[get_container].
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..config import Settings, settings
from ..models import utcnow
from ..proctor.escalation import EscalationPolicy
from ..proctor.scheduling import AsyncioScheduler, Scheduler
from ..proctor.scoring.risk_scorer import RiskScorer
from ..proctor.sources import HaarFaceCounter, LivenessCheck
from ..proctor.supervisor import MonitoringSupervisor
from ..services.event_log import EventLog
from ..services.exam_directory import ExamDirectory
from ..services.locks import LockRegistry
from ..services.log_encryption import LogCipher
from ..services.notifications import NotificationChannel
from ..services.session_reports import SessionReports
from ..services.session_repository import SessionRepository
from ..services.session_state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config: Settings
    repository: SessionRepository
    exams: ExamDirectory
    event_log: EventLog
    state_machine: SessionStateMachine
    scheduler: Scheduler
    escalation: EscalationPolicy
    supervisor: MonitoringSupervisor
    reports: SessionReports
    notifications: NotificationChannel
    risk_scorer: RiskScorer


def build_container(
    config: Settings = settings,
    scheduler: Optional[Scheduler] = None,
    liveness: Optional[LivenessCheck] = None,
    face_counter: Optional[HaarFaceCounter] = None,
    now: Callable[[], datetime] = utcnow,
) -> ServiceContainer:
    """
    Wire every service together.

    Args:
        config: Settings to use
        scheduler: Timer source; defaults to the running asyncio loop
        liveness: Server-side RTT measurement; built from LIVENESS_URL when set
        face_counter: Face counter for camera sources
        now: Clock for session timestamps
    """
    repository = SessionRepository(config.DATABASE_URL)
    repository.create_tables()

    locks = LockRegistry()
    cipher = LogCipher.from_hex(config.LOG_ENCRYPTION_KEY) if config.LOG_ENCRYPTION_ENABLED else None
    event_log = EventLog(repository, locks, cipher)
    exams = ExamDirectory(repository)
    state_machine = SessionStateMachine(repository, exams, event_log, locks, now=now)

    scheduler = scheduler or AsyncioScheduler()
    risk_scorer = RiskScorer()
    notifications = NotificationChannel()

    escalation = EscalationPolicy(
        scheduler,
        state_machine.force_terminate,
        grace_seconds=config.ESCALATION_GRACE_SECONDS,
        max_violations=config.MAX_VIOLATIONS,
        notify=notifications.post,
    )
    if liveness is None and config.LIVENESS_URL:
        liveness = LivenessCheck(config.LIVENESS_URL, timeout=config.LIVENESS_TIMEOUT_SECONDS)

    supervisor = MonitoringSupervisor(
        scheduler,
        event_log,
        escalation,
        liveness,
        risk_scorer=risk_scorer,
        config=config,
        face_counter=face_counter,
        notify=notifications.post,
    )
    state_machine.add_terminal_listener(supervisor.on_session_terminal)
    state_machine.add_terminal_listener(
        lambda session: scheduler.call_later(
            config.NOTIFICATION_RETENTION_SECONDS,
            lambda: notifications.discard(session.id),
        )
    )

    reports = SessionReports(repository, exams, event_log, risk_scorer)

    logger.info(
        f"Services ready (db={config.DATABASE_URL.split('://')[0]}, "
        f"encryption={'on' if cipher else 'off'}, monitoring={'on' if config.MONITORING_ENABLED else 'off'})"
    )
    return ServiceContainer(
        config=config,
        repository=repository,
        exams=exams,
        event_log=event_log,
        state_machine=state_machine,
        scheduler=scheduler,
        escalation=escalation,
        supervisor=supervisor,
        reports=reports,
        notifications=notifications,
        risk_scorer=risk_scorer,
    )


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """FastAPI dependency returning the process-wide container."""
    global _container
    if _container is None:
        _container = build_container()
    return _container
