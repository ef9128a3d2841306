"""
Data Models for the Hemisphere Check-In Application

This module contains the dataclasses for the records kept in the JSON
stores. Records are stored with camelCase keys, so every model converts
itself to and from that on-disk shape.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from .badges import format_badge_payload


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision"""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as written by format_timestamp

    Returns:
        Aware datetime, or None if the value is empty or unparseable
    """
    if not value:
        return None
    try:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class ScanMethod(Enum):
    """How an attendee was resolved at the entrance"""
    SCAN = "scan"
    MANUAL = "manual"


@dataclass
class Attendee:
    """
    Data model for a registered attendee

    The id is the registration time in epoch milliseconds and is also
    what the badge QR code carries after the ``hemisphere:`` prefix.
    """
    id: str
    first_name: str
    last_name: str
    email: str
    company: str = ""
    created_at: str = ""
    event_id: Optional[str] = None
    checked_in: bool = False
    checked_in_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Attendee':
        """
        Create Attendee instance from a stored record

        Args:
            data: Dictionary with camelCase keys

        Returns:
            Attendee instance
        """
        event_id = data.get('eventId')
        return cls(
            id=str(data['id']),
            first_name=data.get('firstName') or "",
            last_name=data.get('lastName') or "",
            email=data.get('email') or "",
            company=data.get('company') or "",
            created_at=data.get('createdAt') or "",
            event_id=str(event_id) if event_id not in (None, "") else None,
            checked_in=bool(data.get('checkedIn', False)),
            checked_in_at=data.get('checkedInAt')
        )

    def to_dict(self) -> Dict:
        """
        Convert attendee to its stored representation

        Optional fields that are unset are left out of the record,
        matching how an undone check-in drops ``checkedInAt``.
        """
        data = {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'email': self.email,
            'company': self.company,
            'createdAt': self.created_at,
            'checkedIn': self.checked_in,
        }
        if self.event_id is not None:
            data['eventId'] = self.event_id
        if self.checked_in_at is not None:
            data['checkedInAt'] = self.checked_in_at
        return data

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def qr_value(self) -> str:
        return format_badge_payload(self.id)


def normalize_email(email) -> str:
    """Trim and lower-case an email for comparison and storage"""
    return str(email or "").strip().lower()


@dataclass
class Event:
    """Data model for an event and its exhibitor-app activation code"""
    id: str
    name: str
    activation_code: str = ""

    @classmethod
    def from_dict(cls, data: Dict) -> 'Event':
        return cls(
            id=str(data['id']),
            name=data.get('name') or "",
            activation_code=data.get('activationCode') or ""
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'activationCode': self.activation_code,
        }

    def matches_code(self, code: str) -> bool:
        """Case-insensitive comparison against the activation code"""
        return bool(self.activation_code) and self.activation_code.lower() == code.lower()


@dataclass
class ExhibitorToken:
    """
    Data model for an exhibitor magic-link token

    Tokens are scoped to one email and valid until ``expires_at``. They
    are not consumed when used.
    """
    email: str
    token: str
    expires_at: str

    @classmethod
    def from_dict(cls, data: Dict) -> 'ExhibitorToken':
        return cls(
            email=data.get('email') or "",
            token=data.get('token') or "",
            expires_at=data.get('expiresAt') or ""
        )

    def to_dict(self) -> Dict:
        return {
            'email': self.email,
            'token': self.token,
            'expiresAt': self.expires_at,
        }

    def is_valid_at(self, moment: datetime) -> bool:
        """
        Check whether the token is still valid

        Args:
            moment: The time to check against

        Returns:
            True if the expiry is strictly after ``moment``
        """
        expires = parse_timestamp(self.expires_at)
        return expires is not None and expires > moment


@dataclass
class Lead:
    """Data model for an attendee contact captured at an exhibitor booth"""
    id: int
    event_id: str
    attendee_id: str
    attendee_name: str
    attendee_email: str
    exhibitor: str
    notes: str
    timestamp: str

    @classmethod
    def from_dict(cls, data: Dict) -> 'Lead':
        attendee_id = data.get('attendeeId')
        return cls(
            id=data.get('id'),
            event_id=data.get('eventId') or "",
            attendee_id=str(attendee_id) if attendee_id is not None else "",
            attendee_name=data.get('attendeeName') or "",
            attendee_email=data.get('attendeeEmail') or "",
            exhibitor=data.get('exhibitor') or "",
            notes=data.get('notes') or "",
            timestamp=data.get('timestamp') or ""
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'eventId': self.event_id,
            'attendeeId': self.attendee_id,
            'attendeeName': self.attendee_name,
            'attendeeEmail': self.attendee_email,
            'exhibitor': self.exhibitor,
            'notes': self.notes,
            'timestamp': self.timestamp,
        }


@dataclass
class ScanLogEntry:
    """
    Data model for one entry of the check-in audit trail

    One entry is written per successful resolution, including repeat
    scans of attendees that are already checked in.
    """
    id: int
    attendee_id: str
    attendee_name: str
    attendee_email: str
    method: ScanMethod
    timestamp: str

    @classmethod
    def from_dict(cls, data: Dict) -> 'ScanLogEntry':
        attendee_id = data.get('attendeeId')
        try:
            method = ScanMethod(data.get('method') or "scan")
        except ValueError:
            method = ScanMethod.SCAN
        return cls(
            id=data.get('id'),
            attendee_id=str(attendee_id) if attendee_id is not None else "",
            attendee_name=data.get('attendeeName') or "",
            attendee_email=data.get('attendeeEmail') or "",
            method=method,
            timestamp=data.get('timestamp') or ""
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'attendeeId': self.attendee_id,
            'attendeeName': self.attendee_name,
            'attendeeEmail': self.attendee_email,
            'method': self.method.value,
            'timestamp': self.timestamp,
        }
