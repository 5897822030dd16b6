"""
Session Repository - SQL persistence for exam sessions and proctoring logs

Tables:
- exams: exam records mirrored from the authoring service
- exam_sessions: one row per attempt
- proctoring_logs: append-only log rows, unique per (session_id, seq)

Works against SQLite (default) or PostgreSQL through DATABASE_URL.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from ..models import Answer, Exam, ExamSession, SessionStatus, utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# Schema
# ============================================================================

metadata = MetaData()

exams_table = Table(
    "exams",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("start_time", DateTime, nullable=False),
    Column("end_time", DateTime, nullable=False),
    Column("created_by", String(64), nullable=False, index=True),
)

sessions_table = Table(
    "exam_sessions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("student_id", String(64), nullable=False, index=True),
    Column("exam_id", String(64), nullable=False, index=True),
    Column("start_time", DateTime, nullable=False),
    Column("end_time", DateTime, nullable=True),
    Column("status", String(32), nullable=False),
    Column("answers", JSON, nullable=False),
    Column("created_at", DateTime, nullable=False),
)

# At most one in-progress attempt per (student, exam).
Index(
    "uq_exam_sessions_in_progress",
    sessions_table.c.student_id,
    sessions_table.c.exam_id,
    unique=True,
    sqlite_where=sessions_table.c.status == SessionStatus.IN_PROGRESS.value,
    postgresql_where=sessions_table.c.status == SessionStatus.IN_PROGRESS.value,
)

logs_table = Table(
    "proctoring_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String(64), nullable=False),
    Column("seq", Integer, nullable=False),
    Column("payload", Text, nullable=False),
    Column("encrypted", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("session_id", "seq", name="uq_proctoring_logs_session_seq"),
)


# ============================================================================
# Row mapping
# ============================================================================

def _answers_to_json(answers: Dict[str, Answer]) -> List[Dict[str, Any]]:
    # Stored as a list so question order survives any JSON backend.
    return [
        {"questionId": question_id, "value": answer.value, "score": answer.score}
        for question_id, answer in answers.items()
    ]


def _answers_from_json(raw: Optional[List[Dict[str, Any]]]) -> Dict[str, Answer]:
    return {
        item["questionId"]: Answer(value=item.get("value"), score=item.get("score"))
        for item in raw or []
    }


def _row_to_session(row) -> ExamSession:
    return ExamSession(
        id=row.id,
        student_id=row.student_id,
        exam_id=row.exam_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=SessionStatus(row.status),
        answers=_answers_from_json(row.answers),
        created_at=row.created_at,
    )


def _row_to_exam(row) -> Exam:
    return Exam(
        id=row.id,
        title=row.title,
        description=row.description or "",
        start_time=row.start_time,
        end_time=row.end_time,
        created_by=row.created_by,
    )


# ============================================================================
# Repository
# ============================================================================

class SessionRepository:
    """
    Repository for exam session persistence.

    The repository does no locking of its own; callers serialize writes
    per session through the shared LockRegistry.
    """

    def __init__(self, db_url: str):
        self.db_url = db_url
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        """Lazy load sync engine"""
        if self._engine is None:
            if self.db_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every thread sees the same in-memory database.
                self._engine = create_engine(
                    self.db_url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            elif self.db_url.startswith("sqlite"):
                self._engine = create_engine(self.db_url, connect_args={"check_same_thread": False})
            else:
                self._engine = create_engine(self.db_url, pool_pre_ping=True)
        return self._engine

    def create_tables(self) -> None:
        metadata.create_all(self.engine)
        logger.info("Proctoring tables ready")

    # ========================================================================
    # Exams
    # ========================================================================

    def save_exam(self, exam: Exam) -> None:
        values = {
            "title": exam.title,
            "description": exam.description,
            "start_time": exam.start_time,
            "end_time": exam.end_time,
            "created_by": exam.created_by,
        }
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(exams_table.c.id).where(exams_table.c.id == exam.id)
            ).first()
            if existing:
                conn.execute(update(exams_table).where(exams_table.c.id == exam.id).values(**values))
            else:
                conn.execute(insert(exams_table).values(id=exam.id, **values))

    def get_exam(self, exam_id: str) -> Optional[Exam]:
        with self.engine.connect() as conn:
            row = conn.execute(select(exams_table).where(exams_table.c.id == exam_id)).first()
        return _row_to_exam(row) if row else None

    def exam_ids_created_by(self, user_id: str) -> List[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(exams_table.c.id).where(exams_table.c.created_by == user_id)
            ).all()
        return [row.id for row in rows]

    # ========================================================================
    # Sessions
    # ========================================================================

    def insert_session(self, session: ExamSession) -> None:
        """Insert a new attempt. Raises IntegrityError on a duplicate in-progress row."""
        with self.engine.begin() as conn:
            conn.execute(
                insert(sessions_table).values(
                    id=session.id,
                    student_id=session.student_id,
                    exam_id=session.exam_id,
                    start_time=session.start_time,
                    end_time=session.end_time,
                    status=session.status.value,
                    answers=_answers_to_json(session.answers),
                    created_at=session.created_at,
                )
            )

    def get_session(self, session_id: str) -> Optional[ExamSession]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sessions_table).where(sessions_table.c.id == session_id)
            ).first()
        return _row_to_session(row) if row else None

    def find_in_progress(self, student_id: str, exam_id: str) -> Optional[ExamSession]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(sessions_table).where(
                    sessions_table.c.student_id == student_id,
                    sessions_table.c.exam_id == exam_id,
                    sessions_table.c.status == SessionStatus.IN_PROGRESS.value,
                )
            ).first()
        return _row_to_session(row) if row else None

    def update_session(self, session: ExamSession) -> None:
        """Persist status, end time and answers together."""
        with self.engine.begin() as conn:
            conn.execute(
                update(sessions_table)
                .where(sessions_table.c.id == session.id)
                .values(
                    status=session.status.value,
                    end_time=session.end_time,
                    answers=_answers_to_json(session.answers),
                )
            )

    def _session_filters(
        self,
        exam_ids: Optional[Sequence[str]] = None,
        exam_id: Optional[str] = None,
        status: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> list:
        filters = []
        if exam_ids is not None:
            filters.append(sessions_table.c.exam_id.in_(list(exam_ids)))
        if exam_id:
            filters.append(sessions_table.c.exam_id == exam_id)
        if status:
            filters.append(sessions_table.c.status == status)
        if created_from:
            filters.append(sessions_table.c.created_at >= created_from)
        if created_to:
            filters.append(sessions_table.c.created_at <= created_to)
        return filters

    def list_sessions(
        self,
        exam_ids: Optional[Sequence[str]] = None,
        exam_id: Optional[str] = None,
        status: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        order_by_start: bool = False,
    ) -> Tuple[List[ExamSession], int]:
        """
        List sessions newest first.

        Args:
            exam_ids: Restrict to these exams (teacher scoping); None means unrestricted
            exam_id: Optional single exam filter
            status: Optional status filter
            created_from / created_to: Optional creation time bounds (inclusive)
            offset / limit: Pagination window
            order_by_start: Sort by start_time instead of created_at

        Returns:
            (sessions, total matching count)
        """
        filters = self._session_filters(exam_ids, exam_id, status, created_from, created_to)
        order_column = sessions_table.c.start_time if order_by_start else sessions_table.c.created_at

        query = select(sessions_table).where(*filters).order_by(order_column.desc(), sessions_table.c.id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        count_query = select(func.count()).select_from(sessions_table).where(*filters)

        with self.engine.connect() as conn:
            rows = conn.execute(query).all()
            total = conn.execute(count_query).scalar_one()

        return [_row_to_session(row) for row in rows], int(total)

    # ========================================================================
    # Proctoring logs
    # ========================================================================

    def append_log(self, session_id: str, payload: str, encrypted: bool) -> int:
        """Append one log row and return its sequence number."""
        with self.engine.begin() as conn:
            current = conn.execute(
                select(func.max(logs_table.c.seq)).where(logs_table.c.session_id == session_id)
            ).scalar()
            seq = (current or 0) + 1
            conn.execute(
                insert(logs_table).values(
                    session_id=session_id,
                    seq=seq,
                    payload=payload,
                    encrypted=encrypted,
                    created_at=utcnow(),
                )
            )
        return seq

    def read_logs(self, session_id: str) -> List[Tuple[int, str, bool]]:
        """All log rows for a session as (seq, payload, encrypted), in seq order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(logs_table.c.seq, logs_table.c.payload, logs_table.c.encrypted)
                .where(logs_table.c.session_id == session_id)
                .order_by(logs_table.c.seq)
            ).all()
        return [(row.seq, row.payload, bool(row.encrypted)) for row in rows]
