"""
Main Application Module for Hemisphere Check-In

This module contains the Flask application class that wires the JSON
stores to the services and exposes them as a JSON HTTP API for the
registration desk, the entrance scanner, the admin dashboard and the
exhibitor portal.
"""

import logging
import os
from datetime import timedelta
from typing import Optional

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from .exceptions import HemisphereException
from .exports import checkins_csv, leads_csv, scan_log_csv
from .logging_config import configure_logging
from .models import Attendee
from .repositories import RepositoryFactory
from .services import (
    AttendeeService,
    CheckInService,
    EventService,
    ExhibitorTokenService,
    LeadCaptureService,
    LeadService,
    ScanLogService
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'DEBUG': False,
    'TESTING': False,
    'DATA_DIR': os.path.join(os.getcwd(), 'data'),
    'EXHIBITOR_TOKEN_TTL_MINUTES': 60,
    'CONFIGURE_LOGGING': True,
    'LOG_LEVEL': None,
    'LOG_FORMAT': None,
}

_BOOL_SETTINGS = {'DEBUG', 'TESTING', 'CONFIGURE_LOGGING'}
_INT_SETTINGS = {'EXHIBITOR_TOKEN_TTL_MINUTES'}


def _settings_from_environment() -> dict:
    """Read HEMISPHERE_<NAME> overrides for every known setting"""
    settings = {}
    for name in DEFAULT_CONFIG:
        raw = os.environ.get(f"HEMISPHERE_{name}")
        if raw is None:
            continue
        if name in _BOOL_SETTINGS:
            settings[name] = raw.strip().lower() in ('1', 'true', 'yes', 'on')
        elif name in _INT_SETTINGS:
            settings[name] = int(raw)
        else:
            settings[name] = raw
    return settings


def _attendee_view(attendee: Attendee) -> dict:
    data = attendee.to_dict()
    data['name'] = attendee.full_name
    return data


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        body,
        status=200,
        mimetype="text/csv",
        headers={
            'Content-Disposition': f'attachment; filename="{filename}"',
        }
    )


class HemisphereApp:
    """
    Main Flask application class for Hemisphere Check-In

    This class builds the repositories and services from configuration
    and registers the HTTP routes and error handlers.
    """

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize the application

        Args:
            config: Optional configuration overriding defaults and environment
        """
        self.app = Flask(__name__)
        self.config = self._configure_app(config)

        if self.config['CONFIGURE_LOGGING']:
            configure_logging(self.config['LOG_LEVEL'], self.config['LOG_FORMAT'])

        # Initialize repositories
        self.repositories = RepositoryFactory.create_collection_repositories(
            self.config['DATA_DIR']
        )

        # Initialize services
        self.attendee_service = AttendeeService(self.repositories['attendees'])
        self.scan_log_service = ScanLogService(self.repositories['scanlogs'])
        self.checkin_service = CheckInService(self.attendee_service, self.scan_log_service)
        self.event_service = EventService(self.repositories['events'])
        self.token_service = ExhibitorTokenService(
            self.repositories['exhibitor_tokens'],
            ttl=timedelta(minutes=self.config['EXHIBITOR_TOKEN_TTL_MINUTES'])
        )
        self.lead_service = LeadService(self.repositories['leads'])
        self.lead_capture_service = LeadCaptureService(
            self.token_service, self.attendee_service, self.lead_service
        )

        self._register_routes()
        self._register_error_handlers()

        logger.info("Hemisphere Check-In ready, data in %s", self.config['DATA_DIR'])

    def _configure_app(self, config: Optional[dict] = None) -> dict:
        """
        Merge defaults, environment variables and explicit overrides

        Args:
            config: Optional configuration dictionary, applied last

        Returns:
            The effective configuration
        """
        settings = dict(DEFAULT_CONFIG)
        settings.update(_settings_from_environment())
        if config:
            settings.update(config)

        self.app.config['DEBUG'] = settings['DEBUG']
        self.app.config['TESTING'] = settings['TESTING']
        self.app.config['DATA_DIR'] = settings['DATA_DIR']
        return settings

    def _register_routes(self) -> None:
        """Register all Flask routes"""
        add = self.app.add_url_rule
        add("/", "index", self.index)
        add("/health", "health", self.health)

        # Registration and attendees
        add("/register", "register", self.register, methods=["POST"])
        add("/attendees", "attendees", self.list_attendees)
        add("/attendees/export", "attendees_export", self.export_checkins)
        add("/attendees/<attendee_id>", "attendee", self.attendee, methods=["GET", "PATCH"])

        # Check-in workflow
        add("/checkin", "checkin", self.set_checked_in, methods=["POST"])
        add("/checkin/scan", "checkin_scan", self.checkin_scan, methods=["POST"])
        add("/checkin/manual", "checkin_manual", self.checkin_manual, methods=["POST"])
        add("/checkin/summary", "checkin_summary", self.checkin_summary)

        # Scan log
        add("/scanlog", "scanlog", self.scanlog, methods=["GET", "POST"])
        add("/scanlog/export", "scanlog_export", self.export_scanlog)

        # Events
        add("/events", "events", self.events, methods=["GET", "POST"])
        add("/activate", "activate", self.activate, methods=["POST"])

        # Leads and exhibitors
        add("/leads", "leads", self.leads, methods=["GET", "POST"])
        add("/leads/export", "leads_export", self.export_leads)
        add("/exhibitors/leads", "exhibitor_leads", self.exhibitor_leads, methods=["GET", "POST"])
        add("/exhibitors/request-link", "exhibitor_request_link",
            self.request_exhibitor_link, methods=["POST"])
        add("/exhibitors/list", "exhibitor_list", self.list_exhibitors)

    def _register_error_handlers(self) -> None:
        """Register error handlers; every error body is {"error": message}"""

        @self.app.errorhandler(HemisphereException)
        def handle_hemisphere_exception(e):
            if e.status_code >= 500:
                logger.error("Request %s %s failed: %s", request.method, request.path, e)
            return jsonify({"error": e.message}), e.status_code

        @self.app.errorhandler(HTTPException)
        def handle_http_exception(e):
            return jsonify({"error": e.description}), e.code

        @self.app.errorhandler(Exception)
        def handle_unexpected(e):
            logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=e)
            return jsonify({"error": "Internal server error"}), 500

    @staticmethod
    def _json_body() -> dict:
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _bearer_token() -> str:
        header = request.headers.get("Authorization", "")
        if header.lower().startswith("bearer "):
            return header.split(" ", 1)[1].strip()
        return ""

    def index(self):
        """Service information"""
        return {
            "service": "Hemisphere Check-In",
            "status": "operational",
            "endpoints": {
                "register": "/register",
                "attendees": "/attendees",
                "checkin": "/checkin",
                "scanlog": "/scanlog",
                "leads": "/leads",
                "exhibitors": "/exhibitors/list",
            },
        }

    def health(self):
        """Health check; reports whether the data directory is usable"""
        data_dir = self.config['DATA_DIR']
        # created on first write, so check the parent until then
        target = data_dir if os.path.isdir(data_dir) else os.path.dirname(os.path.abspath(data_dir))
        writable = os.access(target, os.W_OK)
        return {"status": "healthy" if writable else "degraded", "dataDir": data_dir}

    def register(self):
        """
        Register an attendee

        Returns:
            201 with the attendee and the value to encode on the badge
        """
        body = self._json_body()
        attendee = self.attendee_service.register(
            body.get("firstName"),
            body.get("lastName"),
            body.get("email"),
            company=body.get("company"),
            event_id=body.get("eventId")
        )
        return {"attendee": attendee.to_dict(), "qrValue": attendee.qr_value}, 201

    def list_attendees(self):
        return jsonify([_attendee_view(a) for a in self.attendee_service.list_attendees()])

    def attendee(self, attendee_id: str):
        """
        Read or edit one attendee

        Args:
            attendee_id: Attendee id, optionally with the badge prefix
        """
        if request.method == "PATCH":
            updated = self.attendee_service.update_attendee(attendee_id, self._json_body())
            return {"success": True, "attendee": _attendee_view(updated)}

        return _attendee_view(self.attendee_service.get_attendee_or_raise(attendee_id))

    def set_checked_in(self):
        """Operator check-in toggle; checkedIn defaults to true"""
        body = self._json_body()
        checked_in = body.get("checkedIn", True)
        attendee = self.attendee_service.set_checked_in(body.get("id"), bool(checked_in))
        return {"success": True, "attendee": _attendee_view(attendee)}

    def checkin_scan(self):
        """Check in from a scanned badge payload"""
        body = self._json_body()
        payload = body.get("payload", body.get("qrValue", body.get("id")))
        return self.checkin_service.check_in_by_scan(payload).to_dict()

    def checkin_manual(self):
        """Check in by typed name"""
        body = self._json_body()
        return self.checkin_service.check_in_by_name(body.get("name")).to_dict()

    def checkin_summary(self):
        return self.checkin_service.get_summary()

    def scanlog(self):
        """List the scan log, or append an entry to it"""
        if request.method == "POST":
            body = self._json_body()
            entry = self.scan_log_service.append(
                body.get("attendeeId"),
                body.get("attendeeName"),
                body.get("attendeeEmail"),
                body.get("method") or "scan"
            )
            return entry.to_dict()

        return jsonify([e.to_dict() for e in self.scan_log_service.get_all_entries()])

    def export_scanlog(self):
        return _csv_response(
            scan_log_csv(self.scan_log_service.get_all_entries()),
            "scanlogs.csv"
        )

    def export_checkins(self):
        return _csv_response(
            checkins_csv(
                self.attendee_service.list_attendees(),
                self.scan_log_service.latest_scan_by_attendee()
            ),
            "hemisphere-checkins.csv"
        )

    def events(self):
        """List events, or create one"""
        if request.method == "POST":
            body = self._json_body()
            event = self.event_service.create_event(body.get("name"), body.get("activationCode"))
            return event.to_dict(), 201

        return jsonify([e.to_dict() for e in self.event_service.list_events()])

    def activate(self):
        """Resolve an exhibitor-app activation code to its event"""
        event = self.event_service.activate(self._json_body().get("code"))
        return {"eventId": event.id, "eventName": event.name}

    def leads(self):
        """List all leads, or record one without an exhibitor session"""
        if request.method == "POST":
            body = self._json_body()
            lead = self.lead_service.create_lead(
                attendee_id=body.get("attendeeId"),
                attendee_name=body.get("attendeeName"),
                attendee_email=body.get("attendeeEmail"),
                exhibitor=body.get("exhibitor"),
                notes=body.get("notes"),
                event_id=body.get("eventId")
            )
            return lead.to_dict(), 201

        return jsonify([l.to_dict() for l in self.lead_service.get_all_leads()])

    def export_leads(self):
        return _csv_response(leads_csv(self.lead_service.get_all_leads()), "exhibitor-leads.csv")

    def exhibitor_leads(self):
        """
        Exhibitor portal, gated by the magic-link bearer token

        GET lists the leads; POST captures a lead for an attendee.
        """
        token = self._bearer_token()
        if request.method == "POST":
            body = self._json_body()
            lead = self.lead_capture_service.capture(
                token,
                body.get("attendeeId", body.get("qrValue")),
                exhibitor=body.get("exhibitor"),
                notes=body.get("notes"),
                event_id=body.get("eventId")
            )
            return lead.to_dict(), 201

        return self.lead_capture_service.portal_view(token)

    def request_exhibitor_link(self):
        return self.token_service.request_link(self._json_body().get("email"))

    def list_exhibitors(self):
        return jsonify(self.lead_service.list_exhibitors())

    def run(self, host: str = '127.0.0.1', port: int = 5000, debug: bool = None) -> None:
        """
        Run the Flask development server

        Args:
            host: Host address to bind to
            port: Port number to listen on
            debug: Debug mode (overrides config if provided)
        """
        if debug is not None:
            self.app.config['DEBUG'] = debug

        self.app.run(host=host, port=port, debug=self.app.config['DEBUG'])


def create_app(config: Optional[dict] = None) -> HemisphereApp:
    """
    Factory function to create and configure the application

    Args:
        config: Optional configuration dictionary

    Returns:
        Configured HemisphereApp instance
    """
    return HemisphereApp(config)


def create_development_app() -> HemisphereApp:
    """Application configured for local development"""
    return create_app({
        'DEBUG': True,
        'LOG_LEVEL': 'DEBUG',
    })


def create_production_app() -> HemisphereApp:
    """Application configured for production, logging JSON by default"""
    return create_app({
        'DEBUG': False,
        'LOG_FORMAT': os.environ.get('HEMISPHERE_LOG_FORMAT', 'json'),
    })


if __name__ == "__main__":
    create_development_app().run(debug=True)
