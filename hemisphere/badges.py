"""
Badge QR payload handling

Badges carry the ASCII string ``hemisphere:<attendeeId>``. Scanners
and badge printers must emit and parse exactly this prefix.
"""

from dataclasses import dataclass
from typing import Union

BADGE_PREFIX = "hemisphere:"


@dataclass(frozen=True)
class Prefixed:
    """A payload that carried the badge prefix"""
    attendee_id: str


@dataclass(frozen=True)
class Unrecognized:
    """A payload without the badge prefix, kept as typed or scanned"""
    raw: str


BadgePayload = Union[Prefixed, Unrecognized]


def format_badge_payload(attendee_id) -> str:
    return f"{BADGE_PREFIX}{attendee_id}"


def parse_badge_payload(raw) -> BadgePayload:
    """
    Parse a scanned or typed badge payload

    The prefix match ignores case and surrounding whitespace.

    Args:
        raw: The string read from the QR code or entered by hand

    Returns:
        Prefixed with the attendee id, or Unrecognized with the trimmed input
    """
    text = str(raw or "").strip()
    if text.lower().startswith(BADGE_PREFIX):
        return Prefixed(text[len(BADGE_PREFIX):].strip())
    return Unrecognized(text)


def attendee_id_from_payload(raw) -> str:
    """
    Reduce a payload to the identifier used for an exact id lookup

    Unprefixed input is taken as the identifier itself.
    """
    payload = parse_badge_payload(raw)
    if isinstance(payload, Prefixed):
        return payload.attendee_id
    return payload.raw
