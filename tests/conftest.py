"""
Pytest Configuration for Exam Proctoring Tests
"""
import heapq
import itertools
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from exam_proctoring.config import Settings
from exam_proctoring.models import Exam, Identity, Role, utcnow
from exam_proctoring.proctor.scheduling import Scheduler, TimerHandle, run_callback
from exam_proctoring.proctor.sources.liveness import LivenessCheck, LivenessResult
from exam_proctoring.utils.auth import create_access_token

TEST_KEY_HEX = "11" * 32


class FakeScheduler(Scheduler):
    """
    Manual clock for monitor tests.

    Nothing runs until advance() is awaited; due callbacks then run in
    due-time order, including timers scheduled by earlier callbacks.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback):
        handle = TimerHandle()
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._counter), callback, handle, None))
        return handle

    def call_every(self, interval, callback):
        handle = TimerHandle()
        heapq.heappush(self._queue, (self._now + interval, next(self._counter), callback, handle, interval))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[3].cancelled)

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            due, _, callback, handle, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            if interval is not None:
                heapq.heappush(self._queue, (due + interval, next(self._counter), callback, handle, interval))
            await run_callback(callback, "fake")
        self._now = target


class StubLiveness(LivenessCheck):
    """Liveness check returning a preset result without network access."""

    def __init__(self, result: LivenessResult = LivenessResult(True, 20.0, 50.0)):
        super().__init__("http://liveness.invalid/health")
        self.result = result
        self.calls = 0

    async def measure(self) -> LivenessResult:
        self.calls += 1
        return self.result


class FixedFaceCounter:
    """Face counter stand-in; frames in tests are reported as counts."""

    def __init__(self, faces: int = 1):
        self.faces = faces

    def count(self, frame) -> int:
        return self.faces


@pytest.fixture
def scheduler():
    """Manual scheduler"""
    return FakeScheduler()


@pytest.fixture
def liveness():
    """Healthy liveness check"""
    return StubLiveness()


@pytest.fixture
def test_settings():
    """Settings with an in-memory database and a fixed encryption key"""
    return Settings(
        DATABASE_URL="sqlite://",
        LOG_ENCRYPTION_ENABLED=True,
        LOG_ENCRYPTION_KEY=TEST_KEY_HEX,
        MONITORING_ENABLED=True,
        SNAPSHOTS_ENABLED=False,
    )


@pytest.fixture
def container(test_settings, scheduler, liveness):
    """Fully wired services on an in-memory database"""
    from exam_proctoring.api.deps import build_container

    return build_container(
        config=test_settings,
        scheduler=scheduler,
        liveness=liveness,
        face_counter=FixedFaceCounter(),
    )


@pytest.fixture
def file_container(tmp_path, scheduler, liveness):
    """Services on a SQLite file, one connection per thread; used by concurrency tests"""
    from exam_proctoring.api.deps import build_container

    config = Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'proctoring.db'}",
        LOG_ENCRYPTION_KEY=TEST_KEY_HEX,
        SNAPSHOTS_ENABLED=False,
    )
    container = build_container(config=config, scheduler=scheduler, liveness=liveness, face_counter=FixedFaceCounter())
    now = utcnow()
    container.exams.register(Exam(
        id="exam-open",
        title="Algebra Midterm",
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=2),
        created_by="teacher-1",
    ))
    return container


@pytest.fixture
def open_exam(container):
    """Exam open now, created by teacher-1"""
    now = utcnow()
    return container.exams.register(Exam(
        id="exam-open",
        title="Algebra Midterm",
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=2),
        created_by="teacher-1",
    ))


@pytest.fixture
def closed_exam(container):
    """Exam whose window ended yesterday"""
    now = utcnow()
    return container.exams.register(Exam(
        id="exam-closed",
        title="Geometry Final",
        start_time=now - timedelta(days=2),
        end_time=now - timedelta(days=1),
        created_by="teacher-1",
    ))


@pytest.fixture
def student():
    return Identity(user_id="student-1", role=Role.STUDENT)


@pytest.fixture
def other_student():
    return Identity(user_id="student-2", role=Role.STUDENT)


@pytest.fixture
def teacher():
    return Identity(user_id="teacher-1", role=Role.TEACHER)


@pytest.fixture
def other_teacher():
    return Identity(user_id="teacher-2", role=Role.TEACHER)


@pytest.fixture
def admin():
    return Identity(user_id="admin-1", role=Role.ADMIN)


def headers_for(identity: Identity) -> dict:
    token = create_access_token(identity.user_id, identity.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers(student):
    return headers_for(student)


@pytest.fixture
def other_student_headers(other_student):
    return headers_for(other_student)


@pytest.fixture
def teacher_headers(teacher):
    return headers_for(teacher)


@pytest.fixture
def other_teacher_headers(other_teacher):
    return headers_for(other_teacher)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def client(container, monkeypatch):
    """FastAPI test client bound to the test container"""
    from exam_proctoring.api import deps
    from exam_proctoring.main import app

    monkeypatch.setattr(deps, "_container", container)
    return TestClient(app)
