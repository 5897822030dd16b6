"""
Event Log - append-only proctoring log per exam session

Appends are serialized per session and stamped with a sequence number, so
read order always equals append order. Records can be encrypted at rest;
a record that fails to decrypt is reported as unreadable without hiding
the rest of the log.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from ..errors import AccessDenied, CorruptLog, InvalidState, NotFound, ValidationError
from ..models import (
    Identity,
    LogEntry,
    LogRecord,
    ProctoringEvent,
    Role,
    UnreadableEntry,
)
from ..utils.logging import log_proctor_event
from .locks import LockRegistry
from .log_encryption import DecryptionError, LogCipher
from .session_repository import SessionRepository

logger = logging.getLogger(__name__)


@dataclass
class LogReadResult:
    """Result of reading one session's log."""
    session_id: str
    records: List[LogRecord] = field(default_factory=list)

    def __iter__(self) -> Iterator[LogRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def events(self) -> List[ProctoringEvent]:
        return [record.event for record in self.records if isinstance(record, LogEntry)]

    @property
    def unreadable(self) -> List[UnreadableEntry]:
        return [record for record in self.records if isinstance(record, UnreadableEntry)]


class EventLog:
    """
    Append-only proctoring event log.

    Args:
        repository: Session repository holding the log rows
        locks: Per-session lock registry shared with the state machine
        cipher: Optional cipher; when set, new records are encrypted
    """

    def __init__(
        self,
        repository: SessionRepository,
        locks: LockRegistry,
        cipher: Optional[LogCipher] = None,
    ):
        self.repository = repository
        self.locks = locks
        self.cipher = cipher

    def append(self, identity: Identity, session_id: str, event: ProctoringEvent) -> int:
        """
        Append an event to an in-progress session's log.

        Args:
            identity: Caller; must own the session or be the system identity
            session_id: Target session
            event: Event to append

        Returns:
            Sequence number assigned to the record

        Raises:
            NotFound: session does not exist
            AccessDenied: caller does not own the session
            InvalidState: session is no longer in progress
            ValidationError: event type or details are empty
        """
        if not event.event_type or not event.event_type.strip():
            raise ValidationError("Event type required")
        if event.details is None or not str(event.details).strip():
            raise ValidationError("Event details required")

        with self.locks.get(session_id):
            session = self.repository.get_session(session_id)
            if session is None:
                raise NotFound("Exam session not found")

            if identity.role is not Role.SYSTEM and identity.user_id != session.student_id:
                raise AccessDenied()

            if session.is_terminal:
                raise InvalidState(
                    f"Session {session_id} is {session.status.value}; event not recorded"
                )

            seq = self.repository.append_log(session_id, *self._encode(event))

        log_proctor_event(
            session_id,
            "event",
            {"type": event.event_type, "seq": seq},
            level="debug",
        )
        return seq

    def read(self, session_id: str) -> LogReadResult:
        """Read every record of a session in sequence order."""
        result = LogReadResult(session_id=session_id)
        for seq, payload, encrypted in self.repository.read_logs(session_id):
            try:
                result.records.append(LogEntry(seq=seq, event=self._decode(seq, payload, encrypted)))
            except CorruptLog as e:
                logger.warning(f"[LOG] session={session_id} {e}")
                result.records.append(UnreadableEntry(seq=seq, reason=e.reason))
        return result

    # ============== Encoding ==============

    def _encode(self, event: ProctoringEvent):
        plaintext = json.dumps(event.to_dict())
        if self.cipher is None:
            return plaintext, False
        return self.cipher.encrypt(plaintext), True

    def _decode(self, seq: int, payload: str, encrypted: bool) -> ProctoringEvent:
        if encrypted:
            if self.cipher is None:
                raise CorruptLog(seq, "record is encrypted but no key is configured")
            try:
                payload = self.cipher.decrypt(payload)
            except DecryptionError as e:
                raise CorruptLog(seq, str(e))

        try:
            return ProctoringEvent.from_dict(json.loads(payload))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CorruptLog(seq, f"unparseable record: {e}")
