"""
Hemisphere Check-In Package

An event check-in and lead-capture web application built with Flask.
Attendees register and receive a QR-coded badge, are checked in at the
entrance by badge scan or name lookup, and exhibitors capture leads
that they later read through a magic-link portal.

Main Components:
- models: Data models for attendees, events, tokens, leads and scan logs
- badges: Parsing and formatting of the ``hemisphere:<id>`` badge payload
- repositories: JSON file persistence with the repository pattern
- services: Registration, check-in workflow, events, tokens and leads
- exports: CSV reports for the admin dashboard
- exceptions: Custom exception classes mapped to HTTP statuses
- app: Main Flask application class

Usage:
    from hemisphere import create_app

    app = create_app({'DATA_DIR': './data'})
    app.run()
"""

__version__ = "1.0.0"

# Import main components for easy access
from .app import create_app, create_development_app, create_production_app
from .badges import BADGE_PREFIX, Prefixed, Unrecognized, parse_badge_payload
from .models import Attendee, Event, ExhibitorToken, Lead, ScanLogEntry, ScanMethod
from .services import (
    AttendeeService,
    CheckInService,
    EventService,
    ExhibitorTokenService,
    LeadCaptureService,
    LeadService,
    ScanLogService
)
from .repositories import RepositoryFactory
from .exceptions import (
    HemisphereException,
    ValidationError,
    DuplicateError,
    NotFoundError,
    Unauthorized,
    StorageError
)

__all__ = [
    # App factory functions
    'create_app',
    'create_development_app',
    'create_production_app',

    # Badge payloads
    'BADGE_PREFIX',
    'Prefixed',
    'Unrecognized',
    'parse_badge_payload',

    # Data models
    'Attendee',
    'Event',
    'ExhibitorToken',
    'Lead',
    'ScanLogEntry',
    'ScanMethod',

    # Services
    'AttendeeService',
    'CheckInService',
    'EventService',
    'ExhibitorTokenService',
    'LeadCaptureService',
    'LeadService',
    'ScanLogService',

    # Repository factory
    'RepositoryFactory',

    # Exceptions
    'HemisphereException',
    'ValidationError',
    'DuplicateError',
    'NotFoundError',
    'Unauthorized',
    'StorageError'
]
