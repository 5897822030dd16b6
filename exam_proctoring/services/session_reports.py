"""
Session Reports - reviewer queries over sessions and their logs

Teachers only see sessions of exams they created; admins see everything.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import ExamSession, Identity, Role, SessionStatus
from ..proctor.scoring.risk_scorer import RiskScorer
from .event_log import EventLog
from .exam_directory import ExamDirectory
from .session_repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    sessions: List[ExamSession]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> Dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


class SessionReports:
    """Read-side queries for the reviewer dashboard."""

    def __init__(
        self,
        repository: SessionRepository,
        exams: ExamDirectory,
        event_log: EventLog,
        risk_scorer: Optional[RiskScorer] = None,
    ):
        self.repository = repository
        self.exams = exams
        self.event_log = event_log
        self.risk_scorer = risk_scorer or RiskScorer()

    def _scope(self, identity: Identity) -> Optional[List[str]]:
        """Exam ids a reviewer may see; None means unrestricted."""
        if identity.role is Role.TEACHER:
            return self.exams.exam_ids_created_by(identity.user_id)
        return None

    def list_sessions(
        self,
        identity: Identity,
        exam_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        sessions, total = self.repository.list_sessions(
            exam_ids=self._scope(identity),
            exam_id=exam_id,
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return Page(sessions=sessions, page=page, limit=limit, total=total)

    def live_sessions(self, identity: Identity) -> List[ExamSession]:
        sessions, _ = self.repository.list_sessions(
            exam_ids=self._scope(identity),
            status=SessionStatus.IN_PROGRESS.value,
            order_by_start=True,
        )
        return sessions

    def reports(
        self,
        identity: Identity,
        exam_id: Optional[str] = None,
        flagged: bool = False,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Sessions with risk analytics.

        Args:
            identity: Reviewer identity (teacher scoping applies)
            exam_id: Optional exam filter
            flagged: Keep only sessions with at least one flagged event
            start_date / end_date: Optional creation time bounds

        Returns:
            Session dicts, each with an "analytics" entry
        """
        sessions, _ = self.repository.list_sessions(
            exam_ids=self._scope(identity),
            exam_id=exam_id,
            created_from=start_date,
            created_to=end_date,
        )

        results = []
        for session in sessions:
            log = self.event_log.read(session.id)
            if flagged and not self.risk_scorer.is_flagged(log.records):
                continue
            analysis = self.risk_scorer.score(log.records)
            data = session.to_dict()
            data["analytics"] = analysis.to_dict()
            data["riskLevel"] = self.risk_scorer.risk_level(analysis.risk_score)
            data["unreadableRecords"] = len(log.unreadable)
            results.append(data)

        logger.info(f"[REPORTS] {identity.role.value} {identity.user_id} fetched {len(results)} session reports")
        return results
