"""
CSV exports for the admin dashboards

Every field is wrapped in double quotes with embedded quotes doubled,
rows are separated by ``\\n`` and each export has a fixed header row.
"""

import csv
from io import StringIO
from typing import Dict, Iterable, List, Sequence

from .models import Attendee, Lead, ScanLogEntry

SCAN_LOG_HEADERS = ["id", "attendeeId", "attendeeName", "attendeeEmail", "timestamp"]
LEAD_HEADERS = ["id", "attendeeId", "attendeeName", "attendeeEmail", "exhibitor", "notes", "timestamp"]
CHECKIN_HEADERS = [
    "Name", "Email", "Company", "EventId", "CheckedIn",
    "CheckedInAt", "ScannedViaQr", "LastScanAt", "Id",
]


def to_csv(headers: Sequence[str], rows: Iterable[Sequence]) -> str:
    """
    Render rows as CSV

    The header row is written bare; data fields are always quoted.
    None renders as an empty string.
    """
    buffer = StringIO()
    buffer.write(",".join(headers) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else str(value) for value in row])
    # no trailing newline after the last row
    return buffer.getvalue()[:-1]


def scan_log_csv(entries: Iterable[ScanLogEntry]) -> str:
    return to_csv(SCAN_LOG_HEADERS, (
        [e.id, e.attendee_id, e.attendee_name, e.attendee_email, e.timestamp]
        for e in entries
    ))


def leads_csv(leads: Iterable[Lead]) -> str:
    return to_csv(LEAD_HEADERS, (
        [l.id, l.attendee_id, l.attendee_name, l.attendee_email, l.exhibitor, l.notes, l.timestamp]
        for l in leads
    ))


def checkins_csv(attendees: List[Attendee], latest_scans: Dict[str, str]) -> str:
    """
    Check-in report with one row per attendee

    Args:
        attendees: Attendees in the order they should appear
        latest_scans: Most recent scan timestamp keyed by attendee id
    """
    rows = []
    for a in attendees:
        last_scan = latest_scans.get(a.id, "")
        rows.append([
            a.full_name,
            a.email,
            a.company,
            a.event_id or "",
            "Yes" if a.checked_in else "No",
            a.checked_in_at or "",
            "Yes" if last_scan else "No",
            last_scan,
            a.id,
        ])
    return to_csv(CHECKIN_HEADERS, rows)
