"""
Tests for the Event Log and Log Encryption

Tests:
1. Append ordering and validation
2. Ownership and terminal-session rejection
3. AES-GCM envelope round trip and tamper detection
4. Unreadable records isolated on read
"""
import json
import threading

import pytest
from sqlalchemy import update

from exam_proctoring.errors import AccessDenied, InvalidState, NotFound, ValidationError
from exam_proctoring.models import SYSTEM_IDENTITY, LogEntry, ProctoringEvent, UnreadableEntry
from exam_proctoring.services.event_log import EventLog
from exam_proctoring.services.log_encryption import DecryptionError, LogCipher
from exam_proctoring.services.session_repository import logs_table


def _event(event_type="tab-switch", details="Student switched tabs"):
    return ProctoringEvent(event_type=event_type, details=details)


class TestAppend:
    """Appending events"""

    def test_append_assigns_sequence(self, container, open_exam, student):
        """Sequence numbers follow append order"""
        session, _ = container.state_machine.start(student, open_exam.id)

        seqs = [container.event_log.append(student, session.id, _event(details=f"e{i}")) for i in range(3)]

        assert seqs == [1, 2, 3]
        log = container.event_log.read(session.id)
        assert [e.details for e in log.events] == ["e0", "e1", "e2"]

    def test_system_identity_may_append(self, container, open_exam, student):
        """Monitors append as the system identity"""
        session, _ = container.state_machine.start(student, open_exam.id)

        container.event_log.append(SYSTEM_IDENTITY, session.id, _event("multiple-faces", "2 faces"))

        assert container.event_log.read(session.id).events[0].event_type == "multiple-faces"

    def test_other_student_denied(self, container, open_exam, student, other_student):
        """A student cannot write into another student's log"""
        session, _ = container.state_machine.start(student, open_exam.id)

        with pytest.raises(AccessDenied):
            container.event_log.append(other_student, session.id, _event())

    def test_unknown_session(self, container, student):
        """Appending to a missing session raises NotFound"""
        with pytest.raises(NotFound):
            container.event_log.append(student, "missing", _event())

    @pytest.mark.parametrize("event_type,details", [("", "x"), ("  ", "x"), ("tab-switch", ""), ("tab-switch", "   ")])
    def test_empty_fields_rejected(self, container, open_exam, student, event_type, details):
        """Event type and details are required"""
        session, _ = container.state_machine.start(student, open_exam.id)

        with pytest.raises(ValidationError):
            container.event_log.append(student, session.id, _event(event_type, details))

    def test_terminal_session_rejects_events(self, container, open_exam, student):
        """Nothing is appended after submit"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.event_log.append(student, session.id, _event())
        container.state_machine.submit(student, session.id, {})

        with pytest.raises(InvalidState):
            container.event_log.append(student, session.id, _event())

        assert len(container.event_log.read(session.id)) == 1

    def test_concurrent_appends_keep_unique_sequence(self, file_container, student):
        """Parallel appends never share or skip a sequence number"""
        session, _ = file_container.state_machine.start(student, "exam-open")

        def append_many(worker):
            for i in range(5):
                file_container.event_log.append(student, session.id, _event(details=f"{worker}-{i}"))

        threads = [threading.Thread(target=append_many, args=(w,)) for w in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        seqs = [record.seq for record in file_container.event_log.read(session.id)]
        assert seqs == list(range(1, 21))


class TestLogCipher:
    """AES-256-GCM envelopes"""

    def test_round_trip(self):
        """Decrypt returns the original text"""
        cipher = LogCipher(bytes(range(32)))

        stored = cipher.encrypt('{"eventType": "tab-switch"}')

        assert cipher.decrypt(stored) == '{"eventType": "tab-switch"}'

    def test_envelope_fields(self):
        """Stored form carries hex ciphertext, 12-byte iv and 16-byte tag"""
        stored = json.loads(LogCipher(bytes(32)).encrypt("hello"))

        assert set(stored) == {"encryptedData", "iv", "authTag"}
        assert len(bytes.fromhex(stored["iv"])) == 12
        assert len(bytes.fromhex(stored["authTag"])) == 16

    def test_fresh_nonce_per_record(self):
        """Encrypting the same text twice gives different envelopes"""
        cipher = LogCipher(bytes(32))

        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_flipped_ciphertext_byte_fails(self):
        """Any modified byte fails authentication"""
        cipher = LogCipher(bytes(32))
        envelope = json.loads(cipher.encrypt("tamper me"))
        data = bytearray.fromhex(envelope["encryptedData"])
        data[0] ^= 0x01
        envelope["encryptedData"] = data.hex()

        with pytest.raises(DecryptionError):
            cipher.decrypt(json.dumps(envelope))

    def test_wrong_key_fails(self):
        """A different key cannot read the record"""
        stored = LogCipher(bytes(32)).encrypt("secret")

        with pytest.raises(DecryptionError):
            LogCipher(bytes([1]) * 32).decrypt(stored)

    def test_malformed_envelope(self):
        """Non-envelope payloads are rejected"""
        with pytest.raises(DecryptionError):
            LogCipher(bytes(32)).decrypt("not json")

    def test_key_length_checked(self):
        """Only 32-byte keys are accepted"""
        with pytest.raises(ValueError):
            LogCipher(b"short")

    def test_from_hex_without_key_generates_one(self):
        """A missing key yields a working per-process cipher"""
        cipher = LogCipher.from_hex(None)

        assert cipher.decrypt(cipher.encrypt("x")) == "x"


class TestEncryptedRead:
    """Reading encrypted logs"""

    def test_records_encrypted_at_rest(self, container, open_exam, student):
        """Stored payloads do not contain the plaintext"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.event_log.append(student, session.id, _event(details="very secret detail"))

        [(seq, payload, encrypted)] = container.repository.read_logs(session.id)

        assert encrypted is True
        assert "very secret detail" not in payload

    def test_tampered_record_isolated(self, container, open_exam, student):
        """One corrupted record is reported unreadable; the rest still read"""
        session, _ = container.state_machine.start(student, open_exam.id)
        for i in range(3):
            container.event_log.append(student, session.id, _event(details=f"e{i}"))

        _, payload, _ = container.repository.read_logs(session.id)[1]
        envelope = json.loads(payload)
        tag = bytearray.fromhex(envelope["authTag"])
        tag[-1] ^= 0xFF
        envelope["authTag"] = tag.hex()
        with container.repository.engine.begin() as conn:
            conn.execute(
                update(logs_table)
                .where(logs_table.c.session_id == session.id, logs_table.c.seq == 2)
                .values(payload=json.dumps(envelope))
            )

        log = container.event_log.read(session.id)

        assert len(log) == 3
        assert isinstance(log.records[0], LogEntry)
        assert isinstance(log.records[1], UnreadableEntry)
        assert log.records[1].seq == 2
        assert isinstance(log.records[2], LogEntry)
        assert [e.details for e in log.events] == ["e0", "e2"]

    def test_encrypted_record_without_key(self, container, open_exam, student):
        """A log written with encryption is unreadable by a keyless reader"""
        session, _ = container.state_machine.start(student, open_exam.id)
        container.event_log.append(student, session.id, _event())

        keyless = EventLog(container.repository, container.event_log.locks, cipher=None)
        log = keyless.read(session.id)

        assert len(log.unreadable) == 1
        assert log.events == []

    def test_plaintext_mode(self, container, open_exam, student):
        """Without a cipher records are stored as JSON"""
        session, _ = container.state_machine.start(student, open_exam.id)
        plain = EventLog(container.repository, container.event_log.locks, cipher=None)

        plain.append(student, session.id, _event(details="plain"))

        [(_, payload, encrypted)] = container.repository.read_logs(session.id)
        assert encrypted is False
        assert json.loads(payload)["details"] == "plain"
        assert plain.read(session.id).events[0].details == "plain"
