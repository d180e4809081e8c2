# app/core/exceptions.py
"""
Custom exceptions for the utility hub.
Provides structured error handling with clear error types and messages.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class UtilityError(Exception):
    """Base exception for all utility operations."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(UtilityError):
    """Raised when input validation fails."""

    pass


class ConfigurationError(UtilityError):
    """Raised when application configuration is invalid."""

    pass


class BroadcasterUnavailableError(ConfigurationError):
    """Raised when the progress transport has not been set up."""

    pass


class WorkItemError(UtilityError):
    """Raised by a work function when a single item cannot be produced."""

    pass


class ItemSkippedError(UtilityError):
    """Raised when an item is structurally invalid and is not worth attempting."""

    pass


class ConversionError(WorkItemError):
    """Raised when a file cannot be converted between formats."""

    pass


class DocumentFetchError(WorkItemError):
    """Raised when a remote document cannot be downloaded."""

    pass


class ArchiveAssemblyError(UtilityError):
    """Raised when the result archive cannot be written."""

    pass


# HTTP Exception factories for FastAPI
def create_http_exception(
    status_code: int, message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a structured HTTP exception."""
    detail = {"success": False, "error": message}
    if details:
        detail["details"] = details
    return HTTPException(status_code=status_code, detail=detail)


def validation_http_error(
    message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a 400 validation error."""
    return create_http_exception(400, message, details)


def not_found_http_error(resource: str, identifier: str) -> HTTPException:
    """Create a 404 not found error."""
    return create_http_exception(
        404, f"{resource} not found", {"resource": resource, "identifier": identifier}
    )


def service_unavailable_http_error(message: str) -> HTTPException:
    """Create a 503 error for missing runtime dependencies."""
    return create_http_exception(503, message)


def internal_server_http_error(
    message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a 500 internal server error."""
    return create_http_exception(500, f"Internal server error: {message}", details)
