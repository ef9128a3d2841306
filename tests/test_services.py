"""Tests for hemisphere.services -- registration, check-in, events, tokens and leads."""
from datetime import timedelta

import pytest

from hemisphere.exceptions import (
    DuplicateError,
    NotFoundError,
    StorageError,
    Unauthorized,
    ValidationError,
)
from hemisphere.models import ScanMethod, format_timestamp
from hemisphere.repositories import InMemoryRepository
from hemisphere.services import (
    AttendeeService,
    CheckInService,
    EventService,
    ExhibitorTokenService,
    LeadCaptureService,
    LeadService,
    ScanLogService,
    make_activation_code,
    next_timestamp_id,
)


class _UnreadableRepository(InMemoryRepository):

    def load_data(self):
        raise StorageError("read", "Invalid JSON in scanlogs.json")


@pytest.fixture
def attendees(memory_repo, clock):
    return AttendeeService(memory_repo(), clock=clock)


@pytest.fixture
def scan_log(memory_repo, clock):
    return ScanLogService(memory_repo(), clock=clock)


@pytest.fixture
def checkin(attendees, scan_log):
    return CheckInService(attendees, scan_log)


@pytest.fixture
def tokens(memory_repo, clock):
    return ExhibitorTokenService(memory_repo(), clock=clock)


@pytest.fixture
def leads(memory_repo, clock):
    return LeadService(memory_repo(), clock=clock)


@pytest.fixture
def capture(tokens, attendees, leads):
    return LeadCaptureService(tokens, attendees, leads)


def _register(service, first="Ada", last="Lovelace", email="ada@x.com", **kwargs):
    return service.register(first, last, email, **kwargs)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

class TestNextTimestampId:

    def test_uses_epoch_millis(self, clock):
        assert next_timestamp_id(clock(), []) == int(clock().timestamp() * 1000)

    def test_bumps_past_taken_ids(self, clock):
        base = int(clock().timestamp() * 1000)
        assert next_timestamp_id(clock(), [str(base), base + 1]) == base + 2


class TestMakeActivationCode:

    def test_normalizes_name(self):
        code = make_activation_code("  Acme Widgets, Inc. ")
        prefix, digest = code.split("-")
        assert prefix == "ACMEWI"
        assert len(digest) == 6
        assert digest == digest.upper()

    def test_deterministic_and_case_insensitive(self):
        assert make_activation_code("acme") == make_activation_code("ACME")

    def test_empty_name_falls_back(self):
        assert make_activation_code("!!!").startswith("EXHIBI-")


# ---------------------------------------------------------------------------
# AttendeeService
# ---------------------------------------------------------------------------

class TestRegister:

    def test_register_stores_normalized_attendee(self, attendees, clock):
        attendee = _register(attendees, email="  Ada@X.com ", company="Analytical")
        assert attendee.email == "ada@x.com"
        assert attendee.company == "Analytical"
        assert attendee.checked_in is False
        assert attendee.checked_in_at is None
        assert attendee.created_at == format_timestamp(clock())
        assert attendee.qr_value == f"hemisphere:{attendee.id}"
        assert len(attendees.get_all_attendees()) == 1

    def test_distinct_emails_get_unique_ids(self, attendees):
        ids = {
            _register(attendees, email=f"person{i}@x.com").id
            for i in range(5)
        }
        assert len(ids) == 5
        assert len(attendees.get_all_attendees()) == 5

    def test_duplicate_email_is_rejected_and_store_unchanged(self, attendees):
        _register(attendees)
        before = attendees.attendee_repository.load_data()
        with pytest.raises(DuplicateError):
            _register(attendees, first="Other", email=" ADA@x.com")
        assert attendees.attendee_repository.load_data() == before

    @pytest.mark.parametrize("first,last,email", [
        ("", "Lovelace", "ada@x.com"),
        ("Ada", None, "ada@x.com"),
        ("Ada", "Lovelace", ""),
        ("Ada", "Lovelace", "   "),
    ])
    def test_missing_fields(self, attendees, first, last, email):
        with pytest.raises(ValidationError):
            attendees.register(first, last, email)
        assert attendees.get_all_attendees() == []


class TestAttendeeLookup:

    def test_get_by_id_and_payload(self, attendees):
        attendee = _register(attendees)
        assert attendees.get_attendee(attendee.id) == attendee
        assert attendees.get_attendee(attendee.qr_value) == attendee

    def test_get_or_raise_unknown(self, attendees):
        with pytest.raises(NotFoundError):
            attendees.get_attendee_or_raise("hemisphere:404")

    def test_record_missing_id_is_storage_error(self, memory_repo, clock):
        service = AttendeeService(memory_repo([{"firstName": "Ada"}]), clock=clock)
        with pytest.raises(StorageError):
            service.get_all_attendees()

    def test_list_newest_first(self, attendees, clock):
        first = _register(attendees, email="a@x.com")
        clock.advance(minutes=1)
        second = _register(attendees, email="b@x.com")
        assert [a.id for a in attendees.list_attendees()] == [second.id, first.id]

    def test_find_by_name_is_case_insensitive_substring(self, attendees):
        _register(attendees, "Ada", "Lovelace", "ada@x.com")
        _register(attendees, "Grace", "Hopper", "grace@x.com")
        assert [a.first_name for a in attendees.find_by_name("a LOVE")] == ["Ada"]
        assert attendees.find_by_name("  ") == []


class TestUpdateAttendee:

    def test_only_whitelisted_fields_change(self, attendees):
        attendee = _register(attendees)
        updated = attendees.update_attendee(attendee.id, {
            "company": "Babbage & Co",
            "eventId": "ev1",
            "checkedIn": True,
            "id": "hijack",
        })
        assert updated.company == "Babbage & Co"
        assert updated.event_id == "ev1"
        assert updated.checked_in is False
        assert updated.id == attendee.id

    def test_email_uniqueness_not_rechecked_on_edit(self, attendees):
        _register(attendees, email="a@x.com")
        other = _register(attendees, email="b@x.com")
        updated = attendees.update_attendee(other.id, {"email": "a@x.com"})
        assert updated.email == "a@x.com"

    def test_unknown_attendee(self, attendees):
        with pytest.raises(NotFoundError):
            attendees.update_attendee("nope", {"company": "x"})


class TestSetCheckedIn:

    def test_toggle_on_keeps_first_timestamp(self, attendees, clock):
        attendee = _register(attendees)
        first = attendees.set_checked_in(attendee.id, True)
        clock.advance(minutes=5)
        again = attendees.set_checked_in(attendee.id, True)
        assert first.checked_in is True
        assert again.checked_in_at == first.checked_in_at

    def test_undo_clears_timestamp(self, attendees):
        attendee = _register(attendees)
        attendees.set_checked_in(attendee.id, True)
        undone = attendees.set_checked_in(attendee.id, False)
        assert undone.checked_in is False
        assert "checkedInAt" not in attendees.attendee_repository.load_data()[0]

    def test_unknown_id(self, attendees):
        with pytest.raises(NotFoundError):
            attendees.set_checked_in(None, True)


# ---------------------------------------------------------------------------
# CheckInService
# ---------------------------------------------------------------------------

class TestCheckInByScan:

    def test_first_scan_checks_in_and_logs(self, attendees, scan_log, checkin, clock):
        attendee = _register(attendees)
        result = checkin.check_in_by_scan(attendee.qr_value)

        assert result.already_checked_in is False
        assert result.attendee.checked_in is True
        assert result.attendee.checked_in_at == format_timestamp(clock())
        entries = scan_log.get_all_entries()
        assert len(entries) == 1
        assert entries[0].method is ScanMethod.SCAN
        assert entries[0].attendee_id == attendee.id
        assert entries[0].attendee_name == "Ada Lovelace"

    def test_repeat_scans_keep_timestamp_and_log_each(self, attendees, scan_log, checkin, clock):
        attendee = _register(attendees)
        first = checkin.check_in_by_scan(attendee.qr_value)
        for _ in range(3):
            clock.advance(seconds=30)
            again = checkin.check_in_by_scan(attendee.qr_value)
            assert again.already_checked_in is True
            assert again.attendee.checked_in_at == first.attendee.checked_in_at
        assert len(scan_log.get_all_entries()) == 4

    def test_bare_id_is_accepted(self, attendees, checkin):
        attendee = _register(attendees)
        assert checkin.check_in_by_scan(attendee.id).attendee.id == attendee.id

    @pytest.mark.parametrize("payload", ["", None, "hemisphere:", "hemisphere:999", "garbage"])
    def test_unresolvable_payload_writes_nothing(self, attendees, scan_log, checkin, payload):
        _register(attendees)
        with pytest.raises(NotFoundError):
            checkin.check_in_by_scan(payload)
        assert scan_log.get_all_entries() == []
        assert attendees.get_all_attendees()[0].checked_in is False

    def test_scan_after_undo_sets_new_timestamp(self, attendees, checkin, clock):
        attendee = _register(attendees)
        first = checkin.check_in_by_scan(attendee.qr_value)
        attendees.set_checked_in(attendee.id, False)
        clock.advance(minutes=10)
        again = checkin.check_in_by_scan(attendee.qr_value)
        assert again.already_checked_in is False
        assert again.attendee.checked_in_at != first.attendee.checked_in_at


class TestCheckInByName:

    def test_manual_check_in_logs_manual(self, attendees, scan_log, checkin):
        _register(attendees, "Grace", "Hopper", "grace@x.com")
        result = checkin.check_in_by_name("hopper")
        assert result.attendee.first_name == "Grace"
        assert scan_log.get_all_entries()[0].method is ScanMethod.MANUAL

    def test_first_match_in_store_order_wins(self, attendees, checkin):
        first = _register(attendees, "Ann", "Lee", "ann@x.com")
        _register(attendees, "Annie", "Leeds", "annie@x.com")
        result = checkin.check_in_by_name("ann")
        assert result.attendee.id == first.id
        assert result.matches == 2

    def test_no_match_writes_nothing(self, attendees, scan_log, checkin):
        _register(attendees)
        with pytest.raises(NotFoundError):
            checkin.check_in_by_name("turing")
        assert scan_log.get_all_entries() == []

    def test_unreadable_scan_log_leaves_attendee_unchanged(self, attendees, clock):
        attendee = _register(attendees)
        broken_log = ScanLogService(_UnreadableRepository(), clock=clock)
        service = CheckInService(attendees, broken_log)
        with pytest.raises(StorageError):
            service.check_in_by_scan(attendee.qr_value)
        assert attendees.get_attendee(attendee.id).checked_in is False

    def test_empty_term(self, checkin):
        with pytest.raises(ValidationError):
            checkin.check_in_by_name("   ")


class TestCheckInSummary:

    def test_counts(self, attendees, checkin):
        ada = _register(attendees)
        _register(attendees, "Grace", "Hopper", "grace@x.com")
        checkin.check_in_by_scan(ada.qr_value)
        checkin.check_in_by_scan(ada.qr_value)
        checkin.check_in_by_name("grace")

        summary = checkin.get_summary()
        assert summary["totalRegistered"] == 2
        assert summary["totalCheckedIn"] == 2
        assert summary["attendanceRate"] == 100
        assert summary["totalScans"] == 3
        assert summary["scansByMethod"] == {"scan": 2, "manual": 1}
        assert summary["uniqueAttendeesScanned"] == 2

    def test_empty(self, checkin):
        assert checkin.get_summary()["attendanceRate"] == 0


# ---------------------------------------------------------------------------
# ScanLogService
# ---------------------------------------------------------------------------

class TestScanLog:

    def test_append_defaults_to_scan(self, scan_log):
        entry = scan_log.append("1", "Ada Lovelace", "ada@x.com", None)
        assert entry.method is ScanMethod.SCAN

    def test_rejects_unknown_method(self, scan_log):
        with pytest.raises(ValidationError):
            scan_log.append("1", "Ada", "ada@x.com", "telepathy")
        assert scan_log.get_all_entries() == []

    def test_ids_unique_within_same_millisecond(self, scan_log):
        first = scan_log.append("1", "Ada", "ada@x.com")
        second = scan_log.append("1", "Ada", "ada@x.com")
        assert first.id != second.id

    def test_latest_scan_by_attendee(self, scan_log, clock):
        scan_log.append("1", "Ada", "ada@x.com")
        clock.advance(minutes=1)
        latest = scan_log.append("1", "Ada", "ada@x.com")
        scan_log.append("2", "Grace", "grace@x.com")
        assert scan_log.latest_scan_by_attendee()["1"] == latest.timestamp
        assert set(scan_log.latest_scan_by_attendee()) == {"1", "2"}


# ---------------------------------------------------------------------------
# EventService
# ---------------------------------------------------------------------------

class TestEvents:

    @pytest.fixture
    def events(self, memory_repo, clock):
        return EventService(memory_repo([
            {"id": "ev1", "name": "Hemisphere 2025", "activationCode": "HEMI25"},
            {"id": "ev2", "name": "Side Event"},
        ]), clock=clock)

    def test_activate_is_case_insensitive(self, events):
        event = events.activate("  hemi25 ")
        assert event.id == "ev1"

    def test_activate_empty_code(self, events):
        with pytest.raises(ValidationError):
            events.activate("")

    def test_activate_unknown_code(self, events):
        with pytest.raises(Unauthorized):
            events.activate("nope")

    def test_create_event_generates_code(self, events):
        event = events.create_event("Expo")
        assert event.activation_code
        assert events.activate(event.activation_code).id == event.id

    def test_create_event_requires_name(self, events):
        with pytest.raises(ValidationError):
            events.create_event(" ")


# ---------------------------------------------------------------------------
# ExhibitorTokenService
# ---------------------------------------------------------------------------

class TestExhibitorTokens:

    def test_request_link(self, tokens, clock):
        link = tokens.request_link(" Booth@Acme.com ")
        assert link["email"] == "booth@acme.com"
        assert link["loginUrl"].startswith("/exhibitors?token=")
        assert link["expiresAt"] == format_timestamp(clock() + timedelta(hours=1))

    def test_request_link_requires_email(self, tokens):
        with pytest.raises(ValidationError):
            tokens.request_link("  ")

    def test_authenticate_is_reusable_until_expiry(self, tokens, clock):
        token = tokens.request_link("booth@acme.com")["loginUrl"].split("=", 1)[1]
        assert tokens.authenticate(token).email == "booth@acme.com"
        clock.advance(minutes=59)
        assert tokens.authenticate(token).email == "booth@acme.com"
        clock.advance(minutes=1)
        with pytest.raises(Unauthorized):
            tokens.authenticate(token)

    @pytest.mark.parametrize("token", ["", None, "unknown"])
    def test_authenticate_rejects(self, tokens, token):
        with pytest.raises(Unauthorized) as exc:
            tokens.authenticate(token)
        assert exc.value.message == "Invalid or expired token"

    def test_expired_tokens_pruned_on_issue(self, tokens, clock):
        tokens.request_link("old@acme.com")
        clock.advance(hours=2)
        tokens.request_link("new@acme.com")
        stored = tokens.token_repository.load_data()
        assert [t["email"] for t in stored] == ["new@acme.com"]


# ---------------------------------------------------------------------------
# LeadService / LeadCaptureService
# ---------------------------------------------------------------------------

class TestLeads:

    def test_create_lead_defaults(self, leads):
        lead = leads.create_lead(attendee_id="1")
        assert lead.exhibitor == "Unknown Exhibitor"
        assert lead.event_id == "unknown_event"
        assert lead.notes == ""

    def test_list_exhibitors_distinct_in_first_seen_order(self, leads):
        leads.create_lead(exhibitor="Acme ")
        leads.create_lead(exhibitor="Globex")
        leads.create_lead(exhibitor="Acme")
        roster = leads.list_exhibitors()
        assert [e["name"] for e in roster] == ["Acme", "Globex"]
        assert roster[0]["activationCode"] == make_activation_code("Acme")


class TestLeadCapture:

    def _token(self, tokens):
        return tokens.request_link("booth@acme.com")["loginUrl"].split("=", 1)[1]

    def test_capture_copies_attendee(self, capture, attendees, tokens, leads):
        attendee = _register(attendees, event_id="ev1")
        lead = capture.capture(self._token(tokens), attendee.qr_value, "Acme", "wants a demo")
        assert lead.attendee_id == attendee.id
        assert lead.attendee_name == "Ada Lovelace"
        assert lead.attendee_email == "ada@x.com"
        assert lead.event_id == "ev1"
        assert lead.notes == "wants a demo"

    def test_capturing_twice_makes_two_rows(self, capture, attendees, tokens, leads):
        attendee = _register(attendees)
        token = self._token(tokens)
        capture.capture(token, attendee.id, "Acme")
        capture.capture(token, attendee.id, "Acme")
        assert len(leads.get_all_leads()) == 2

    def test_expired_token_appends_nothing(self, capture, attendees, tokens, leads, clock):
        attendee = _register(attendees)
        token = self._token(tokens)
        clock.advance(hours=1, seconds=1)
        with pytest.raises(Unauthorized):
            capture.capture(token, attendee.id, "Acme")
        assert leads.get_all_leads() == []

    def test_unknown_token_appends_nothing(self, capture, attendees, leads):
        attendee = _register(attendees)
        with pytest.raises(Unauthorized):
            capture.capture("forged", attendee.id, "Acme")
        assert leads.get_all_leads() == []

    def test_unknown_attendee(self, capture, tokens, leads):
        with pytest.raises(NotFoundError):
            capture.capture(self._token(tokens), "hemisphere:404", "Acme")
        assert leads.get_all_leads() == []

    def test_portal_view(self, capture, tokens, leads):
        leads.create_lead(attendee_id="1", exhibitor="Acme")
        view = capture.portal_view(self._token(tokens))
        assert view["email"] == "booth@acme.com"
        assert len(view["leads"]) == 1
