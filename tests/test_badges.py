"""Tests for hemisphere.badges -- badge QR payload parsing."""
from hemisphere.badges import (
    Prefixed,
    Unrecognized,
    attendee_id_from_payload,
    format_badge_payload,
    parse_badge_payload,
)


class TestParseBadgePayload:

    def test_prefixed_payload(self):
        assert parse_badge_payload("hemisphere:1700000000000") == Prefixed("1700000000000")

    def test_prefix_match_ignores_case_and_whitespace(self):
        assert parse_badge_payload("  HEMISPHERE:42 ") == Prefixed("42")

    def test_bare_id_is_unrecognized(self):
        assert parse_badge_payload("42") == Unrecognized("42")

    def test_other_scheme_is_unrecognized(self):
        assert parse_badge_payload("https://example.com/x") == Unrecognized("https://example.com/x")

    def test_none_is_empty_unrecognized(self):
        assert parse_badge_payload(None) == Unrecognized("")

    def test_prefix_only_has_empty_id(self):
        assert parse_badge_payload("hemisphere:") == Prefixed("")


class TestAttendeeIdFromPayload:

    def test_strips_prefix(self):
        assert attendee_id_from_payload("hemisphere:abc") == "abc"

    def test_bare_value_is_the_id(self):
        assert attendee_id_from_payload(" abc ") == "abc"

    def test_format_then_extract(self):
        assert attendee_id_from_payload(format_badge_payload("123")) == "123"


def test_format_uses_exact_prefix():
    assert format_badge_payload(99) == "hemisphere:99"
