"""
Business Logic Services for the Hemisphere Check-In Application

This module contains the service classes that implement registration,
the check-in workflow, the scan log, events, exhibitor tokens and lead
capture. Services read and write records through repositories and
raise the exceptions from ``exceptions`` for every failure the caller
has to see.
"""

import hashlib
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .badges import attendee_id_from_payload
from .exceptions import (
    DuplicateError,
    NotFoundError,
    StorageError,
    Unauthorized,
    ValidationError
)
from .models import (
    Attendee,
    Event,
    ExhibitorToken,
    Lead,
    ScanLogEntry,
    ScanMethod,
    epoch_millis,
    format_timestamp,
    normalize_email,
    parse_timestamp,
    utc_now
)
from .repositories import DataRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

UPDATABLE_ATTENDEE_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'email': 'email',
    'company': 'company',
    'eventId': 'event_id',
}

DEFAULT_EXHIBITOR = "Unknown Exhibitor"
DEFAULT_EVENT_ID = "unknown_event"


def next_timestamp_id(moment: datetime, existing: Iterable) -> int:
    """
    Millisecond timestamp id, bumped past any id already in use

    Args:
        moment: Creation time of the new record
        existing: Ids already present in the collection

    Returns:
        An integer id not present in ``existing``
    """
    taken = {str(value) for value in existing}
    candidate = epoch_millis(moment)
    while str(candidate) in taken:
        candidate += 1
    return candidate


def make_activation_code(name: str) -> str:
    """
    Derive the exhibitor-app activation code for an exhibitor name

    The name is upper-cased and stripped of anything but A-Z and 0-9;
    the code is the first six characters of that plus a short hash.
    """
    base = re.sub(r'[^A-Z0-9]', '', str(name or '').strip().upper()) or "EXHIBITOR"
    digest = hashlib.sha256(base.encode('utf-8')).hexdigest()[:6].upper()
    return f"{base[:6]}-{digest}"


def _required(value, field_name: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field_name} is required", field_name)
    return text


def _decode(model, record: Dict):
    """Build ``model`` from a stored record, treating bad records as corruption"""
    try:
        return model.from_dict(record)
    except (KeyError, TypeError, ValueError) as e:
        raise StorageError(
            "read",
            f"Malformed {model.__name__} record: {e!r}"
        )


class AttendeeService:
    """
    Handles attendee registration, lookup and check-in state

    Attendee references may be bare ids or badge payloads
    (``hemisphere:<id>``); both resolve to the same record.
    """

    def __init__(self, attendee_repository: DataRepository, clock: Clock = utc_now):
        """
        Initialize attendee service

        Args:
            attendee_repository: Repository for attendee records
            clock: Source of the current time
        """
        self.attendee_repository = attendee_repository
        self.clock = clock

    def register(self, first_name, last_name, email,
                 company=None, event_id=None) -> Attendee:
        """
        Register a new attendee

        Args:
            first_name: Attendee first name
            last_name: Attendee last name
            email: Email address, unique per store ignoring case
            company: Optional company name
            event_id: Optional event the attendee registered for

        Returns:
            The stored Attendee

        Raises:
            ValidationError: If a required field is missing
            DuplicateError: If the email is already registered
        """
        if not first_name or not last_name or not email:
            raise ValidationError("firstName, lastName, and email are required")

        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("firstName, lastName, and email are required", "email")

        def _insert(records: List[Dict]) -> Attendee:
            for record in records:
                if normalize_email(record.get('email')) == normalized:
                    logger.info("Rejected duplicate registration for %s", normalized)
                    raise DuplicateError(normalized)

            now = self.clock()
            attendee = Attendee(
                id=str(next_timestamp_id(now, (r.get('id') for r in records))),
                first_name=str(first_name),
                last_name=str(last_name),
                email=normalized,
                company=str(company or ""),
                created_at=format_timestamp(now),
                event_id=str(event_id) if event_id else None
            )
            records.append(attendee.to_dict())
            return attendee

        attendee = self.attendee_repository.update(_insert)
        logger.info("Registered attendee %s (%s)", attendee.id, attendee.email)
        return attendee

    def get_all_attendees(self) -> List[Attendee]:
        """Attendees in store order"""
        return [_decode(Attendee, r) for r in self.attendee_repository.load_data()]

    def list_attendees(self) -> List[Attendee]:
        """
        Attendees newest first

        Records without a readable ``createdAt`` sort after the rest.
        """
        attendees = self.get_all_attendees()
        floor = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            attendees,
            key=lambda a: parse_timestamp(a.created_at) or floor,
            reverse=True
        )

    def get_attendee(self, reference) -> Optional[Attendee]:
        """
        Get attendee by id or badge payload

        Returns:
            Attendee instance or None if not found
        """
        attendee_id = attendee_id_from_payload(reference)
        if not attendee_id:
            return None
        for record in self.attendee_repository.load_data():
            if str(record.get('id')) == attendee_id:
                return _decode(Attendee, record)
        return None

    def get_attendee_or_raise(self, reference) -> Attendee:
        """
        Get attendee by reference or raise exception if not found

        Raises:
            NotFoundError: If no attendee matches
        """
        attendee = self.get_attendee(reference)
        if not attendee:
            raise NotFoundError("Attendee", str(reference or ""))
        return attendee

    def find_by_name(self, term: str) -> List[Attendee]:
        """
        Attendees whose "first last" name contains ``term``, ignoring case

        Results keep store order.
        """
        needle = str(term or "").strip().lower()
        if not needle:
            return []
        return [
            attendee for attendee in self.get_all_attendees()
            if needle in attendee.full_name.lower()
        ]

    def update_attendee(self, reference, fields: Dict) -> Attendee:
        """
        Apply an edit to an attendee

        Only firstName, lastName, email, company and eventId are applied.
        Email uniqueness is checked at registration only.

        Raises:
            NotFoundError: If no attendee matches
        """
        attendee_id = attendee_id_from_payload(reference)

        def _apply(records: List[Dict]) -> Attendee:
            index = self._index_of(records, attendee_id)
            attendee = _decode(Attendee, records[index])
            for key, attribute in UPDATABLE_ATTENDEE_FIELDS.items():
                if key in fields:
                    value = fields[key]
                    if attribute == 'event_id':
                        value = str(value) if value not in (None, "") else None
                    else:
                        value = "" if value is None else str(value)
                    setattr(attendee, attribute, value)
            records[index] = attendee.to_dict()
            return attendee

        attendee = self.attendee_repository.update(_apply)
        logger.info("Updated attendee %s", attendee.id)
        return attendee

    def set_checked_in(self, reference, checked_in: bool) -> Attendee:
        """
        Operator toggle for the check-in flag

        Checking in an attendee who is already checked in keeps the
        original ``checkedInAt``. Unchecking removes it.

        Raises:
            NotFoundError: If no attendee matches
        """
        if checked_in:
            attendee, _ = self.mark_checked_in(reference)
            return attendee

        attendee_id = attendee_id_from_payload(reference)

        def _undo(records: List[Dict]) -> Attendee:
            index = self._index_of(records, attendee_id)
            attendee = _decode(Attendee, records[index])
            attendee.checked_in = False
            attendee.checked_in_at = None
            records[index] = attendee.to_dict()
            return attendee

        attendee = self.attendee_repository.update(_undo)
        logger.info("Undid check-in for attendee %s", attendee.id)
        return attendee

    def mark_checked_in(self, reference) -> Tuple[Attendee, bool]:
        """
        Move an attendee to the checked-in state

        Returns:
            The attendee and whether it was already checked in

        Raises:
            NotFoundError: If no attendee matches
        """
        attendee_id = attendee_id_from_payload(reference)

        def _mark(records: List[Dict]) -> Tuple[Attendee, bool]:
            index = self._index_of(records, attendee_id)
            attendee = _decode(Attendee, records[index])
            if attendee.checked_in:
                return attendee, True
            attendee.checked_in = True
            attendee.checked_in_at = format_timestamp(self.clock())
            records[index] = attendee.to_dict()
            return attendee, False

        return self.attendee_repository.update(_mark)

    @staticmethod
    def _index_of(records: List[Dict], attendee_id: str) -> int:
        if attendee_id:
            for index, record in enumerate(records):
                if str(record.get('id')) == attendee_id:
                    return index
        raise NotFoundError("Attendee", attendee_id)


class ScanLogService:
    """
    Handles the append-only check-in audit trail

    Entries are never edited or removed.
    """

    def __init__(self, scan_log_repository: DataRepository, clock: Clock = utc_now):
        self.scan_log_repository = scan_log_repository
        self.clock = clock

    def get_all_entries(self) -> List[ScanLogEntry]:
        return [_decode(ScanLogEntry, r) for r in self.scan_log_repository.load_data()]

    def append(self, attendee_id, attendee_name, attendee_email,
               method="scan") -> ScanLogEntry:
        """
        Append one entry to the scan log

        Args:
            attendee_id: Id of the resolved attendee
            attendee_name: Display name at the time of the scan
            attendee_email: Email at the time of the scan
            method: "scan" or "manual", or a ScanMethod

        Returns:
            The stored ScanLogEntry

        Raises:
            ValidationError: If the method is not recognized
        """
        if not isinstance(method, ScanMethod):
            try:
                method = ScanMethod(method or ScanMethod.SCAN.value)
            except ValueError:
                raise ValidationError(f"Unknown scan method '{method}'", "method")

        def _append(records: List[Dict]) -> ScanLogEntry:
            now = self.clock()
            entry = ScanLogEntry(
                id=next_timestamp_id(now, (r.get('id') for r in records)),
                attendee_id="" if attendee_id is None else str(attendee_id),
                attendee_name=attendee_name or "",
                attendee_email=attendee_email or "",
                method=method,
                timestamp=format_timestamp(now)
            )
            records.append(entry.to_dict())
            return entry

        return self.scan_log_repository.update(_append)

    def latest_scan_by_attendee(self) -> Dict[str, str]:
        """Most recent scan timestamp per attendee id"""
        latest: Dict[str, Tuple[datetime, str]] = {}
        for entry in self.get_all_entries():
            moment = parse_timestamp(entry.timestamp)
            if moment is None:
                continue
            current = latest.get(entry.attendee_id)
            if current is None or moment > current[0]:
                latest[entry.attendee_id] = (moment, entry.timestamp)
        return {attendee_id: value[1] for attendee_id, value in latest.items()}


@dataclass
class CheckInResult:
    """Outcome of one successful check-in resolution"""
    attendee: Attendee
    already_checked_in: bool
    scan_log: ScanLogEntry
    matches: int = 1

    def to_dict(self) -> Dict:
        attendee = self.attendee.to_dict()
        attendee['name'] = self.attendee.full_name
        return {
            'success': True,
            'attendee': attendee,
            'alreadyCheckedIn': self.already_checked_in,
            'scanLog': self.scan_log.to_dict(),
            'matches': self.matches,
        }


class CheckInService:
    """
    The entrance check-in workflow

    Resolves a scanned badge or a typed name to one attendee, moves it
    to the checked-in state and appends a scan-log entry. Repeat scans
    keep the first ``checkedInAt`` but are still logged. Failed
    resolutions write nothing.

    The attendee update and the scan-log append are separate writes.
    Both stores are read before either is written, so a corrupt store
    aborts the check-in without changing anything.
    """

    def __init__(self, attendee_service: AttendeeService, scan_log_service: ScanLogService):
        self.attendee_service = attendee_service
        self.scan_log_service = scan_log_service

    def check_in_by_scan(self, payload) -> CheckInResult:
        """
        Check in the attendee named by a badge payload

        Args:
            payload: ``hemisphere:<id>`` or a bare id

        Raises:
            NotFoundError: If the payload is empty or matches no attendee
        """
        attendee_id = attendee_id_from_payload(payload)
        if not attendee_id:
            raise NotFoundError("Attendee", str(payload or ""))
        return self._check_in(attendee_id, ScanMethod.SCAN)

    def check_in_by_name(self, term) -> CheckInResult:
        """
        Check in the first attendee whose name contains ``term``

        Raises:
            ValidationError: If the term is empty
            NotFoundError: If no attendee name matches
        """
        term = str(term or "").strip()
        if not term:
            raise ValidationError("Please type a name before checking in manually.", "name")

        matches = self.attendee_service.find_by_name(term)
        if not matches:
            raise NotFoundError("Attendee", term)
        if len(matches) > 1:
            logger.warning(
                "Manual check-in for '%s' matched %d attendees; using %s",
                term, len(matches), matches[0].id
            )

        result = self._check_in(matches[0].id, ScanMethod.MANUAL)
        result.matches = len(matches)
        return result

    def _check_in(self, attendee_id: str, method: ScanMethod) -> CheckInResult:
        # an unreadable scan log must fail before the attendee is touched
        self.scan_log_service.get_all_entries()
        attendee, already = self.attendee_service.mark_checked_in(attendee_id)
        entry = self.scan_log_service.append(
            attendee.id,
            attendee.full_name or "Attendee",
            attendee.email,
            method
        )
        if already:
            logger.info("Repeat %s for attendee %s", method.value, attendee.id)
        else:
            logger.info("Checked in attendee %s via %s", attendee.id, method.value)
        return CheckInResult(attendee=attendee, already_checked_in=already, scan_log=entry)

    def get_summary(self) -> Dict:
        """
        Attendance statistics for the admin dashboard

        Returns:
            Dictionary with registration, check-in and scan counts
        """
        attendees = self.attendee_service.get_all_attendees()
        entries = self.scan_log_service.get_all_entries()

        by_method = {method.value: 0 for method in ScanMethod}
        for entry in entries:
            by_method[entry.method.value] += 1

        checked_in = sum(1 for a in attendees if a.checked_in)
        return {
            'totalRegistered': len(attendees),
            'totalCheckedIn': checked_in,
            'attendanceRate': (checked_in / len(attendees) * 100) if attendees else 0,
            'totalScans': len(entries),
            'scansByMethod': by_method,
            'uniqueAttendeesScanned': len({e.attendee_id for e in entries}),
        }


class EventService:
    """Handles events and exhibitor-app activation"""

    def __init__(self, event_repository: DataRepository, clock: Clock = utc_now):
        self.event_repository = event_repository
        self.clock = clock

    def list_events(self) -> List[Event]:
        return [_decode(Event, r) for r in self.event_repository.load_data()]

    def activate(self, code) -> Event:
        """
        Find the event an activation code belongs to

        Raises:
            ValidationError: If the code is empty
            Unauthorized: If no event has this code
        """
        code = str(code or "").strip()
        if not code:
            raise ValidationError("Activation code is required", "code")

        for event in self.list_events():
            if event.matches_code(code):
                logger.info("Activated exhibitor app for event %s", event.id)
                return event
        raise Unauthorized("Invalid activation code")

    def create_event(self, name, activation_code=None) -> Event:
        """
        Add an event, generating an activation code when none is given

        Raises:
            ValidationError: If the name is missing
        """
        name = _required(name, "name")
        code = str(activation_code or "").strip() or secrets.token_urlsafe(8)[:8].upper()

        def _insert(records: List[Dict]) -> Event:
            event = Event(
                id=str(next_timestamp_id(self.clock(), (r.get('id') for r in records))),
                name=name,
                activation_code=code
            )
            records.append(event.to_dict())
            return event

        event = self.event_repository.update(_insert)
        logger.info("Created event %s (%s)", event.id, event.name)
        return event


class ExhibitorTokenService:
    """
    Issues and validates exhibitor magic-link tokens

    Expired tokens are only pruned when a new token is issued.
    """

    def __init__(self, token_repository: DataRepository, clock: Clock = utc_now,
                 ttl: timedelta = timedelta(hours=1)):
        self.token_repository = token_repository
        self.clock = clock
        self.ttl = ttl

    def request_link(self, email) -> Dict:
        """
        Issue a login link for an exhibitor email

        Raises:
            ValidationError: If the email is empty
        """
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Email is required to request a login link.", "email")

        now = self.clock()
        issued = ExhibitorToken(
            email=normalized,
            token=str(uuid.uuid4()),
            expires_at=format_timestamp(now + self.ttl)
        )

        def _issue(records: List[Dict]) -> int:
            live = [r for r in records if _decode(ExhibitorToken, r).is_valid_at(now)]
            pruned = len(records) - len(live)
            live.append(issued.to_dict())
            records[:] = live
            return pruned

        pruned = self.token_repository.update(_issue)
        logger.info("Issued exhibitor login link for %s (pruned %d expired)", normalized, pruned)

        minutes = int(self.ttl.total_seconds() // 60)
        return {
            'success': True,
            'loginUrl': f"/exhibitors?token={issued.token}",
            'expiresAt': issued.expires_at,
            'email': normalized,
            'note': (
                f"Send this login link to the exhibitor. It is valid for {minutes} minutes "
                "and can only be used with this email."
            ),
        }

    def authenticate(self, token) -> ExhibitorToken:
        """
        Validate a bearer token

        Returns:
            The matching ExhibitorToken

        Raises:
            Unauthorized: If the token is missing, unknown or expired
        """
        if not token:
            raise Unauthorized()
        now = self.clock()
        for record in self.token_repository.load_data():
            candidate = _decode(ExhibitorToken, record)
            if candidate.token == token and candidate.is_valid_at(now):
                return candidate
        raise Unauthorized()


class LeadService:
    """Handles the lead log and the exhibitor roster derived from it"""

    def __init__(self, lead_repository: DataRepository, clock: Clock = utc_now):
        self.lead_repository = lead_repository
        self.clock = clock

    def get_all_leads(self) -> List[Lead]:
        return [_decode(Lead, r) for r in self.lead_repository.load_data()]

    def create_lead(self, attendee_id=None, attendee_name=None, attendee_email=None,
                    exhibitor=None, notes=None, event_id=None) -> Lead:
        """
        Append a lead; the same attendee may be captured any number of times

        Returns:
            The stored Lead
        """
        def _append(records: List[Dict]) -> Lead:
            now = self.clock()
            lead = Lead(
                id=next_timestamp_id(now, (r.get('id') for r in records)),
                event_id=str(event_id or DEFAULT_EVENT_ID),
                attendee_id="" if attendee_id is None else str(attendee_id),
                attendee_name=attendee_name or "",
                attendee_email=attendee_email or "",
                exhibitor=exhibitor or DEFAULT_EXHIBITOR,
                notes=notes or "",
                timestamp=format_timestamp(now)
            )
            records.append(lead.to_dict())
            return lead

        lead = self.lead_repository.update(_append)
        logger.info("Captured lead %s for %s", lead.id, lead.exhibitor)
        return lead

    def list_exhibitors(self) -> List[Dict]:
        """
        Distinct exhibitor names across all leads with their activation codes

        Names are trimmed and listed in order of first appearance.
        """
        names: List[str] = []
        for lead in self.get_all_leads():
            name = lead.exhibitor.strip()
            if name and name not in names:
                names.append(name)
        return [
            {'name': name, 'activationCode': make_activation_code(name)}
            for name in names
        ]


class LeadCaptureService:
    """
    Exhibitor lead capture behind a magic-link session

    The token is checked before anything else; a rejected token appends
    nothing.
    """

    def __init__(self, token_service: ExhibitorTokenService,
                 attendee_service: AttendeeService, lead_service: LeadService):
        self.token_service = token_service
        self.attendee_service = attendee_service
        self.lead_service = lead_service

    def capture(self, token, attendee_reference, exhibitor=None,
                notes=None, event_id=None) -> Lead:
        """
        Record a lead for an authenticated exhibitor

        Args:
            token: Bearer token from the magic link
            attendee_reference: Attendee id or badge payload
            exhibitor: Booth or company name
            notes: Free-text notes
            event_id: Optional event, defaults to the attendee's event

        Raises:
            Unauthorized: If the token is missing, unknown or expired
            NotFoundError: If the attendee cannot be resolved
        """
        session = self.token_service.authenticate(token)
        attendee = self.attendee_service.get_attendee_or_raise(attendee_reference)
        lead = self.lead_service.create_lead(
            attendee_id=attendee.id,
            attendee_name=attendee.full_name,
            attendee_email=attendee.email,
            exhibitor=exhibitor,
            notes=notes,
            event_id=event_id or attendee.event_id
        )
        logger.info("Lead %s captured by %s", lead.id, session.email)
        return lead

    def portal_view(self, token) -> Dict:
        """
        Leads for the exhibitor portal

        Raises:
            Unauthorized: If the token is missing, unknown or expired
        """
        session = self.token_service.authenticate(token)
        return {
            'leads': [lead.to_dict() for lead in self.lead_service.get_all_leads()],
            'email': session.email,
        }
