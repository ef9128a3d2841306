"""
Custom Exceptions for the Hemisphere Check-In Application

This module defines the exception classes raised by the stores and
services. Each exception carries the HTTP status the web layer answers
with, so route handlers never have to translate errors themselves.
"""


class HemisphereException(Exception):
    """
    Base exception for the Hemisphere application

    All custom exceptions in the system inherit from this class so the
    web layer can register a single fallback error handler.
    """

    status_code = 500

    def __init__(self, message: str, error_code: str = None):
        """
        Initialize Hemisphere exception

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        """String representation of the exception"""
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ValidationError(HemisphereException):
    """
    Raised when request data is missing or malformed

    Covers missing registration fields, empty activation codes,
    empty manual search terms and unknown scan methods.
    """

    status_code = 400

    def __init__(self, message: str, field_name: str = None):
        """
        Initialize validation exception

        Args:
            message: Description of the validation error
            field_name: Optional name of the offending field
        """
        super().__init__(message, "VALIDATION_ERROR")
        self.field_name = field_name


class DuplicateError(HemisphereException):
    """Raised when an email is already registered."""

    status_code = 409

    def __init__(self, email: str):
        super().__init__(
            "An attendee with this email is already registered.",
            "DUPLICATE_EMAIL"
        )
        self.email = email


class NotFoundError(HemisphereException):
    """
    Raised when an attendee, event or badge payload cannot be resolved

    Args:
        entity: Kind of record that was looked up ("Attendee", "Event")
        reference: The identifier or search term that failed
    """

    status_code = 404

    def __init__(self, entity: str, reference: str = None):
        message = f"{entity} not found"
        if reference:
            message = f"{entity} not found for '{reference}'"
        super().__init__(message, "NOT_FOUND")
        self.entity = entity
        self.reference = reference


class Unauthorized(HemisphereException):
    """
    Raised when an exhibitor token or activation code is rejected

    A missing token, an unknown token and an expired token all produce
    the same message so callers cannot tell them apart.
    """

    status_code = 401

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message, "UNAUTHORIZED")


class StorageError(HemisphereException):
    """
    Raised when a JSON store cannot be read or written

    This exception is thrown for unreadable files, malformed JSON and
    failed writes. A store file that does not exist yet is not an error.
    """

    status_code = 500

    def __init__(self, operation: str, details: str):
        """
        Initialize storage exception

        Args:
            operation: The operation that failed (e.g., 'read', 'write')
            details: Detailed error information
        """
        message = f"Storage error during {operation}: {details}"
        super().__init__(message, "STORAGE_ERROR")
        self.operation = operation
        self.details = details
