"""
Report Exporter - CSV export of a session's proctoring log
"""

import csv
import io
from typing import Iterable

from ..models import LogEntry, LogRecord, isoformat_ms

CSV_HEADER = "Timestamp,Event Type,Details\n"
UNREADABLE_EVENT_TYPE = "unreadable-record"


def export_filename(session_id: str) -> str:
    return f"session-{session_id}-logs.csv"


def export_csv(records: Iterable[LogRecord]) -> str:
    """
    Render log records as CSV.

    The header line is plain; every data field is double-quoted with
    embedded quotes doubled. Rows are joined by a single newline and the
    last row has no trailing newline. Unreadable records are kept as rows
    so the export accounts for every sequence number.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")

    for record in records:
        if isinstance(record, LogEntry):
            event = record.event
            writer.writerow([isoformat_ms(event.timestamp), event.event_type, event.details])
        else:
            writer.writerow(["", UNREADABLE_EVENT_TYPE, f"Record {record.seq}: {record.reason}"])

    rows = buffer.getvalue()
    if rows.endswith("\n"):
        rows = rows[:-1]
    return CSV_HEADER + rows
