"""
Exam Directory - read access to exam records owned by the authoring service.
"""
import logging
from typing import List, Optional

from ..models import Exam
from .session_repository import SessionRepository

logger = logging.getLogger(__name__)


class ExamDirectory:
    """Looks up exams and their owners."""

    def __init__(self, repository: SessionRepository):
        self.repository = repository

    def get(self, exam_id: str) -> Optional[Exam]:
        return self.repository.get_exam(exam_id)

    def exam_ids_created_by(self, user_id: str) -> List[str]:
        return self.repository.exam_ids_created_by(user_id)

    def register(self, exam: Exam) -> Exam:
        """Mirror an exam record from the authoring service."""
        self.repository.save_exam(exam)
        logger.info(f"[EXAMS] Registered exam {exam.id} ({exam.title})")
        return exam
