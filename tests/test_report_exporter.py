"""
Tests for the CSV Report Exporter
"""
from datetime import datetime

from exam_proctoring.models import LogEntry, ProctoringEvent, UnreadableEntry
from exam_proctoring.services.report_exporter import CSV_HEADER, export_csv, export_filename


def _entry(seq, event_type, details, timestamp=datetime(2024, 5, 1, 9, 30, 15, 123000)):
    return LogEntry(seq=seq, event=ProctoringEvent(event_type=event_type, details=details, timestamp=timestamp))


class TestExportCsv:
    """CSV rendering"""

    def test_header_and_rows(self):
        """Header is plain, fields are quoted, no trailing newline"""
        csv_text = export_csv([
            _entry(1, "tab-switch", "Switched away"),
            _entry(2, "mic-activity", "Speech detected"),
        ])

        assert csv_text == (
            "Timestamp,Event Type,Details\n"
            '"2024-05-01T09:30:15.123Z","tab-switch","Switched away"\n'
            '"2024-05-01T09:30:15.123Z","mic-activity","Speech detected"'
        )

    def test_embedded_quotes_doubled(self):
        """Quotes inside details are escaped by doubling"""
        csv_text = export_csv([_entry(1, "browser-security", 'Extension "Helper" found, disabled')])

        assert csv_text.splitlines()[1] == (
            '"2024-05-01T09:30:15.123Z","browser-security","Extension ""Helper"" found, disabled"'
        )

    def test_empty_log(self):
        """An empty log exports only the header"""
        assert export_csv([]) == CSV_HEADER

    def test_unreadable_record_kept(self):
        """Unreadable records still produce a row"""
        csv_text = export_csv([
            _entry(1, "tab-switch", "ok"),
            UnreadableEntry(seq=2, reason="authentication tag mismatch"),
        ])

        assert csv_text.splitlines()[2] == '"","unreadable-record","Record 2: authentication tag mismatch"'

    def test_filename(self):
        """Download name includes the session id"""
        assert export_filename("abc123") == "session-abc123-logs.csv"
