"""
Error taxonomy for report exports

Every failure raised by the export pipeline is an ``ExportError`` subclass
carrying a kind, a retry hint and a human-readable message that the
orchestrator records as the final progress message of a failed export.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp


class ExportErrorKind(Enum):
    """Classification of export failures."""
    PERMISSION = "permission"
    VALIDATION = "validation"
    CONCURRENCY = "concurrency"
    TRANSIENT = "transient"
    GENERATOR = "generator"
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


CSV_FALLBACK_SUGGESTION = "Please try again or use CSV export."


class ExportError(Exception):
    """Base class for all export pipeline errors."""

    kind = ExportErrorKind.UNKNOWN
    retryable = False

    def __init__(
        self,
        message: str,
        format: Optional[str] = None,
        code: Optional[int] = None,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.format = format
        self.code = code
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        if self.suggestion and self.suggestion not in self.message:
            return f"{self.message} {self.suggestion}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to a JSON-serializable dictionary."""
        return {
            'type': self.kind.value,
            'message': str(self),
            'format': self.format,
            'code': self.code,
            'retryable': self.retryable,
            'actions': get_error_actions(self),
            'details': self.details
        }


class ExportPermissionError(ExportError):
    """Role is not allowed to export, or the data source refused the session."""
    kind = ExportErrorKind.PERMISSION


class ExportValidationError(ExportError):
    """Malformed filters, empty result sets, or record ceilings exceeded."""
    kind = ExportErrorKind.VALIDATION


class ExportConcurrencyError(ExportError):
    """An identical export is already in flight."""
    kind = ExportErrorKind.CONCURRENCY
    retryable = True


class ExportTransientError(ExportError):
    """Network failures, timeouts, bad payloads, or missing encoder libraries."""
    kind = ExportErrorKind.TRANSIENT
    retryable = True


class ExportGeneratorError(ExportError):
    """A format generator failed while rendering the artifact."""
    kind = ExportErrorKind.GENERATOR
    retryable = True


class ExportConfigurationError(ExportError):
    """Unknown template id or other deployment misconfiguration."""
    kind = ExportErrorKind.CONFIGURATION


class ExportCancelledError(ExportError):
    """The export was cancelled or reclaimed by the recovery sweep."""
    kind = ExportErrorKind.CANCELLED


def fallback_suggestion(format: Optional[str]) -> str:
    """Suggestion attached to format failures; CSV has no encoder dependency."""
    if format and format != 'csv':
        return CSV_FALLBACK_SUGGESTION
    return "Please try again."


def classify_http_status(status: int, format: Optional[str] = None) -> ExportError:
    """
    Map a non-2xx data endpoint status to an export error.

    Args:
        status: HTTP status code returned by the data endpoint
        format: Export format being produced, if any

    Returns:
        The matching ExportError instance (not raised)
    """
    if status == 401:
        return ExportPermissionError(
            "Your session has expired. Please log in again.", format=format, code=401
        )
    if status == 403:
        return ExportPermissionError(
            "You are not authorized to access this report. Please contact your administrator.",
            format=format, code=403
        )
    if status == 404:
        message = "Report endpoint not found. Please try again later."
    elif status == 429:
        message = "Too many requests. Please wait a moment before trying again."
    elif status >= 500:
        message = "Server error occurred while generating the report. Please try again."
    else:
        message = f"Server returned error {status}. Please try again."

    if format:
        message = f"Failed to generate {format.upper()} export. {message}"
    return ExportTransientError(message, format=format, code=status)


def handle_export_error(error: Exception, format: Optional[str] = None) -> ExportError:
    """
    Normalize any exception raised during an export into an ExportError.

    Args:
        error: The exception that was raised
        format: Export format being produced

    Returns:
        An ExportError describing the failure
    """
    if isinstance(error, ExportError):
        if error.format is None:
            error.format = format
        return error

    if isinstance(error, asyncio.TimeoutError):
        return ExportTransientError(
            "Request timed out. The report may be too large. Try using smaller date ranges.",
            format=format
        )

    if isinstance(error, aiohttp.ClientResponseError):
        return classify_http_status(error.status, format)

    if isinstance(error, aiohttp.ClientError):
        return ExportTransientError(
            "Network connection failed. Please check your connection.",
            format=format, details={'error': str(error)}
        )

    label = format.upper() if format else "Report"
    return ExportGeneratorError(
        f"{label} export failed: {error}",
        format=format,
        suggestion=fallback_suggestion(format),
        details={'error_type': type(error).__name__}
    )


def get_error_actions(error: ExportError) -> List[str]:
    """Get user-facing corrective actions for an export error."""
    actions: List[str] = []

    if error.kind == ExportErrorKind.PERMISSION:
        if error.code == 401:
            actions.append("Log out and log back in")
            actions.append("Contact support if the issue persists")
        else:
            actions.append("Contact your administrator for access")
            actions.append("Verify your role permissions")
    elif error.kind == ExportErrorKind.VALIDATION:
        actions.append("Check your filter selections")
        actions.append("Ensure date ranges are valid")
    elif error.kind == ExportErrorKind.CONCURRENCY:
        actions.append("Wait for the current export to finish, then retry")
    elif error.kind in (ExportErrorKind.TRANSIENT, ExportErrorKind.GENERATOR):
        actions.append("Try again in a few moments")
        if error.format and error.format != 'csv':
            actions.append("Use CSV export")
        actions.append("Use smaller date ranges if the report is large")
    elif error.kind == ExportErrorKind.CONFIGURATION:
        actions.append("Contact your administrator")
    elif error.kind == ExportErrorKind.UNKNOWN:
        actions.append("Contact support if the issue continues")

    return actions
