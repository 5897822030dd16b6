"""
Monitoring Supervisor - lifecycle of the monitors attached to each session

start_monitoring builds a fresh set of sources, monitors and an event bus
for one session and collects every monitor's cancellation token.
stop_monitoring cancels all of them and closes the sources. Nothing is
shared between sessions.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..config import Settings, settings
from ..errors import InvalidState, NotFound
from ..models import FLAGGED_EVENT_TYPES, SYSTEM_IDENTITY, ExamSession, SessionStatus, utcnow
from ..services.event_log import EventLog
from ..utils.logging import log_proctor_event
from .escalation import EscalationPolicy
from .event_bus import MonitorEvent, SessionEventBus
from .monitors import (
    AudioMonitor,
    BaseMonitor,
    BrowserSecurityMonitor,
    FaceMonitor,
    NetworkMonitor,
    VisibilityMonitor,
)
from .scheduling import Scheduler, TimerHandle
from .scoring.risk_scorer import RiskAnalysis, RiskScorer
from .sources import (
    CameraSource,
    ConnectivitySource,
    DeviceSource,
    HaarFaceCounter,
    LivenessCheck,
    MicrophoneSource,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionSources:
    camera: CameraSource
    microphone: MicrophoneSource
    devices: DeviceSource
    connectivity: ConnectivitySource

    def close_all(self) -> None:
        for source in (self.camera, self.microphone, self.devices, self.connectivity):
            try:
                source.close()
            except Exception as e:
                logger.error(f"[SUPERVISOR] Failed to close {source.name} source: {e}", exc_info=True)


@dataclass
class MonitoringContext:
    """Everything the supervisor created for one session."""
    session_id: str
    bus: SessionEventBus
    sources: SessionSources
    monitors: Dict[str, BaseMonitor]
    tokens: List[TimerHandle] = field(default_factory=list)
    unsubscribers: List[Callable[[], None]] = field(default_factory=list)
    scored_events: List[str] = field(default_factory=list)
    risk: Optional[RiskAnalysis] = None
    started_at: datetime = field(default_factory=utcnow)

    @property
    def face(self) -> FaceMonitor:
        return self.monitors["face"]

    @property
    def audio(self) -> AudioMonitor:
        return self.monitors["audio"]

    @property
    def visibility(self) -> VisibilityMonitor:
        return self.monitors["visibility"]

    @property
    def network(self) -> NetworkMonitor:
        return self.monitors["network"]

    @property
    def browser_security(self) -> BrowserSecurityMonitor:
        return self.monitors["browser-security"]

    def get_metrics(self) -> Dict[str, Dict]:
        return {name: monitor.get_metrics() for name, monitor in self.monitors.items()}


class MonitoringSupervisor:
    """
    Creates, tracks and tears down per-session monitoring.

    Args:
        scheduler: Timer source shared by all monitors
        event_log: Log receiving every monitor finding
        escalation: Escalation policy subscribed to every session bus
        liveness: Optional server-side RTT measurement for the network monitor
        risk_scorer: Scorer for the live risk view
        config: Monitor cadences and thresholds
        face_counter: Face counter shared by camera sources
        notify: Optional callback notify(session_id, level, message)
    """

    def __init__(
        self,
        scheduler: Scheduler,
        event_log: EventLog,
        escalation: EscalationPolicy,
        liveness: Optional[LivenessCheck] = None,
        risk_scorer: Optional[RiskScorer] = None,
        config: Settings = settings,
        face_counter: Optional[HaarFaceCounter] = None,
        notify: Optional[Callable[[str, str, str], object]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.scheduler = scheduler
        self.event_log = event_log
        self.escalation = escalation
        self.liveness = liveness
        self.risk_scorer = risk_scorer or RiskScorer()
        self.config = config
        self.face_counter = face_counter or HaarFaceCounter()
        self.notify = notify
        self.rng = rng or random.Random()

        self._lock = threading.Lock()
        self._contexts: Dict[str, MonitoringContext] = {}

    # ============== Lifecycle ==============

    def start_monitoring(self, session_id: str) -> MonitoringContext:
        """Start monitoring a session; returns the existing context if already running."""
        with self._lock:
            existing = self._contexts.get(session_id)
            if existing is not None:
                return existing
            context = self._build(session_id)
            self._contexts[session_id] = context

        for monitor in context.monitors.values():
            context.tokens.append(monitor.start())

        log_proctor_event(session_id, "monitoring_started", {"monitors": ",".join(context.monitors)})
        return context

    def stop_monitoring(self, session_id: str) -> bool:
        """
        Cancel every timer and close every source of a session.

        Returns:
            True if the session was being monitored
        """
        with self._lock:
            context = self._contexts.pop(session_id, None)
        if context is None:
            return False

        try:
            for token in context.tokens:
                try:
                    token.cancel()
                except Exception as e:
                    logger.error(f"[SUPERVISOR] Failed to cancel monitor token for {session_id}: {e}", exc_info=True)
        finally:
            for unsubscribe in context.unsubscribers:
                unsubscribe()
            context.bus.close()
            context.sources.close_all()

        log_proctor_event(session_id, "monitoring_stopped", {"events": context.bus.published})
        return True

    def stop_all(self) -> None:
        for session_id in self.active_sessions():
            self.stop_monitoring(session_id)

    def on_session_terminal(self, session: ExamSession) -> None:
        """State machine listener: a finished session is no longer monitored or escalated."""
        self.stop_monitoring(session.id)
        self.escalation.forget(session.id)
        if self.notify is not None and session.status is not SessionStatus.SUBMITTED:
            self.notify(session.id, "critical", f"Your exam session has ended: {session.status.value}")

    # ============== Queries ==============

    def get(self, session_id: str) -> Optional[MonitoringContext]:
        with self._lock:
            return self._contexts.get(session_id)

    def is_monitoring(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def active_sessions(self) -> List[str]:
        with self._lock:
            return list(self._contexts)

    def live_risk(self, session_id: str) -> Optional[RiskAnalysis]:
        context = self.get(session_id)
        return context.risk if context else None

    def record_client_contact(self, session_id: str) -> None:
        """Any request from the exam client proves it is still reachable."""
        context = self.get(session_id)
        if context is not None:
            context.sources.connectivity.touch()

    def observe_client_event(self, session_id: str, event_type: str) -> None:
        """Fold a client-logged event into the live risk view."""
        context = self.get(session_id)
        if context is not None:
            context.sources.connectivity.touch()
            self._update_risk(context, event_type)

    # ============== Wiring ==============

    def _build(self, session_id: str) -> MonitoringContext:
        cfg = self.config
        bus = SessionEventBus(session_id)
        sources = SessionSources(
            camera=CameraSource(self.face_counter),
            microphone=MicrophoneSource(),
            devices=DeviceSource(self.scheduler.now),
            connectivity=ConnectivitySource(self.scheduler.now),
        )
        emit = bus.publish

        monitors: Dict[str, BaseMonitor] = {
            "face": FaceMonitor(
                emit, self.scheduler, sources.camera,
                interval=cfg.FACE_SAMPLE_INTERVAL_SECONDS,
                absence_seconds=cfg.FACE_ABSENCE_SECONDS,
                history_size=cfg.FACE_HISTORY_SIZE,
                pattern_window=cfg.FACE_PATTERN_WINDOW,
                snapshots_enabled=cfg.SNAPSHOTS_ENABLED,
                snapshot_delay=(cfg.SNAPSHOT_MIN_DELAY_SECONDS, cfg.SNAPSHOT_MAX_DELAY_SECONDS),
                rng=self.rng,
            ),
            "audio": AudioMonitor(
                emit, self.scheduler, sources.microphone,
                interval=cfg.AUDIO_SAMPLE_INTERVAL_SECONDS,
                speech_threshold=cfg.AUDIO_SPEECH_THRESHOLD,
                hangover_seconds=cfg.AUDIO_SPEECH_HANGOVER_SECONDS,
                silence_seconds=cfg.AUDIO_SILENCE_SECONDS,
                window_size=cfg.AUDIO_WINDOW_SIZE,
            ),
            "visibility": VisibilityMonitor(
                emit, self.scheduler,
                off_screen_seconds=cfg.OFF_SCREEN_SECONDS,
            ),
            "network": NetworkMonitor(
                emit, self.scheduler, self.liveness, sources.connectivity,
                interval=cfg.NETWORK_CHECK_INTERVAL_SECONDS,
                grace_seconds=cfg.NETWORK_DISCONNECT_GRACE_SECONDS,
                liveness_timeout=cfg.LIVENESS_TIMEOUT_SECONDS,
            ),
            "browser-security": BrowserSecurityMonitor(
                emit, self.scheduler, sources.devices, sources.connectivity,
                interval=cfg.SECURITY_CHECK_INTERVAL_SECONDS,
                client_silence_seconds=cfg.CLIENT_SILENCE_SECONDS,
                devtools_threshold_px=cfg.DEVTOOLS_THRESHOLD_PX,
                inactivity_seconds=cfg.INACTIVITY_TIMEOUT_SECONDS,
            ),
        }

        context = MonitoringContext(
            session_id=session_id,
            bus=bus,
            sources=sources,
            monitors=monitors,
        )

        # Log writer first so escalation-triggered terminations land after the finding.
        context.unsubscribers.append(bus.subscribe(self._write_to_log))
        context.unsubscribers.append(bus.subscribe(self.escalation.on_monitor_event))
        context.unsubscribers.append(
            bus.subscribe(lambda sid, event: self._update_risk(context, event.event_type))
        )
        return context

    def _write_to_log(self, session_id: str, event: MonitorEvent) -> None:
        try:
            self.event_log.append(SYSTEM_IDENTITY, session_id, event.to_proctoring_event())
        except InvalidState:
            logger.debug(f"[SUPERVISOR] session={session_id} ended, dropped {event.event_type}")
        except NotFound:
            logger.warning(f"[SUPERVISOR] session={session_id} missing, dropped {event.event_type}")

    def _update_risk(self, context: MonitoringContext, event_type: str) -> None:
        if event_type not in FLAGGED_EVENT_TYPES:
            return
        context.scored_events.append(event_type)
        previous = context.risk
        context.risk = self.risk_scorer.score(context.scored_events)

        previous_level = self.risk_scorer.risk_level(previous.risk_score) if previous else "low"
        level = self.risk_scorer.risk_level(context.risk.risk_score)
        if level != previous_level:
            log_proctor_event(
                context.session_id,
                "risk_level_changed",
                {"from": previous_level, "to": level, "score": context.risk.risk_score},
                level="warning" if level in ("high", "critical") else "info",
            )
