"""
Custom exceptions for the audiovista application.

This module defines domain-specific exceptions for the audio cache: id
validation, download single-flight conflicts, extraction failures, expired
upstream URLs, quota refusals and persistence errors, plus the API layer
exceptions that map onto HTTP status codes.
"""

from __future__ import annotations

from typing import Any

from audiovista.api.schemas.responses import (
    ERROR_TITLES,
    ErrorCode,
    get_error_type_uri,
)


class AudiovistaError(Exception):
    """Base exception for all audiovista errors."""

    def __init__(self, message: str) -> None:
        """
        Initialize AudiovistaError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        """
        self.message = message
        super().__init__(message)


class ValidationError(AudiovistaError):
    """
    Exception raised for data validation failures.

    Raised when a video id does not match the 11-character id pattern.
    Never retried: the same input always fails the same way.

    Attributes
    ----------
    message : str
        Human-readable error message.
    field_name : str | None
        The name of the field that failed validation.
    invalid_value : object
        The value that failed validation.

    Examples
    --------
    >>> try:
    ...     await download_service.download(session, "not-an-id")
    ... except ValidationError as e:
    ...     print(f"Invalid {e.field_name}: {e.invalid_value}")
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field_name: str | None = None,
        invalid_value: object = None,
    ) -> None:
        """
        Initialize ValidationError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Validation failed").
        field_name : str | None, optional
            The name of the field that failed validation (default: None).
        invalid_value : object, optional
            The value that failed validation (default: None).
        """
        self.field_name: str | None = field_name
        self.invalid_value: object = invalid_value
        super().__init__(message)


class DownloadInProgressError(AudiovistaError):
    """
    Exception raised when a download for the same video is already running.

    There is no queueing: callers poll the status and try again later.

    Attributes
    ----------
    video_id : str
        The video whose download is already in flight.
    """

    def __init__(
        self,
        video_id: str,
        message: str = "Download already in progress",
    ) -> None:
        """
        Initialize DownloadInProgressError.

        Parameters
        ----------
        video_id : str
            The video whose download is already in flight.
        message : str, optional
            Human-readable error message (default: "Download already in progress").
        """
        self.video_id = video_id
        super().__init__(message)


class ExtractionError(AudiovistaError):
    """
    Exception raised when the extraction tool fails.

    Covers a nonzero exit, a wall-clock timeout, and an empty result
    (no URL printed, or a zero-byte output file).

    Attributes
    ----------
    message : str
        Human-readable error message.
    timed_out : bool
        Whether the failure was the wall-clock bound being hit.
    exit_code : int | None
        Process exit code, when the process exited on its own.
    stderr : str | None
        Tail of the tool's standard error, for logs only.
    """

    def __init__(
        self,
        message: str = "Audio extraction failed",
        timed_out: bool = False,
        exit_code: int | None = None,
        stderr: str | None = None,
    ) -> None:
        """
        Initialize ExtractionError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Audio extraction failed").
        timed_out : bool, optional
            Whether the wall-clock bound was hit (default: False).
        exit_code : int | None, optional
            Process exit code (default: None).
        stderr : str | None, optional
            Tail of the tool's standard error (default: None).
        """
        self.timed_out = timed_out
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class ExtractionToolMissingError(ExtractionError):
    """Exception raised when the extraction tool binary cannot be executed."""

    def __init__(self, tool_path: str) -> None:
        """
        Initialize ExtractionToolMissingError.

        Parameters
        ----------
        tool_path : str
            The configured path of the missing binary.
        """
        self.tool_path = tool_path
        super().__init__(message=f"Extraction tool not found: {tool_path}")


class UpstreamExpiredError(AudiovistaError):
    """
    Exception raised when the upstream host rejects a resolved URL.

    A 403 or 410 from the media host means the signed URL is no longer valid.
    The streaming path recovers by resolving a fresh URL exactly once.

    Attributes
    ----------
    status_code : int
        The upstream HTTP status (403 or 410).
    """

    def __init__(
        self,
        status_code: int,
        message: str = "Upstream URL expired",
    ) -> None:
        """
        Initialize UpstreamExpiredError.

        Parameters
        ----------
        status_code : int
            The upstream HTTP status (403 or 410).
        message : str, optional
            Human-readable error message (default: "Upstream URL expired").
        """
        self.status_code = status_code
        super().__init__(message)


class QuotaExceededError(AudiovistaError):
    """
    Exception raised when the audio cache is at or above its admission threshold.

    Blocks new downloads only; reads of ready files are never refused.

    Attributes
    ----------
    usage_percent : float
        Current usage as a percent of the configured maximum.
    threshold_percent : float
        Admission threshold in percent.
    """

    def __init__(
        self,
        usage_percent: float,
        threshold_percent: float,
        message: str | None = None,
    ) -> None:
        """
        Initialize QuotaExceededError.

        Parameters
        ----------
        usage_percent : float
            Current usage as a percent of the configured maximum.
        threshold_percent : float
            Admission threshold in percent.
        message : str | None, optional
            Human-readable error message (default: derived from the numbers).
        """
        self.usage_percent = usage_percent
        self.threshold_percent = threshold_percent
        super().__init__(
            message
            or (
                f"Audio cache usage {usage_percent:.1f}% is at or above "
                f"the {threshold_percent:.0f}% admission threshold"
            )
        )


class RepositoryError(AudiovistaError):
    """
    Exception raised for repository/database operation failures.

    Attributes
    ----------
    message : str
        Human-readable error message.
    operation : str | None
        The database operation that failed (e.g., "insert", "update", "delete").
    entity_type : str | None
        The type of entity involved (e.g., "AudioFile").
    original_error : Exception | None
        The original database exception that caused this error.
    """

    def __init__(
        self,
        message: str = "Repository operation failed",
        operation: str | None = None,
        entity_type: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize RepositoryError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Repository operation failed").
        operation : str | None, optional
            The database operation that failed (default: None).
        entity_type : str | None, optional
            The type of entity involved (default: None).
        original_error : Exception | None, optional
            The original database exception (default: None).
        """
        self.operation: str | None = operation
        self.entity_type: str | None = entity_type
        self.original_error: Exception | None = original_error
        super().__init__(message)


# =============================================================================
# API Layer Exceptions
# =============================================================================


class APIError(AudiovistaError):
    """Base exception for API layer errors.

    Attributes
    ----------
    status_code : int
        HTTP status code for the error response (default: 500).
    error_code : ErrorCode
        Machine-readable error code for API consumers.
    message : str
        Human-readable error message.
    details : dict[str, Any] | None
        Additional error context (e.g., resource_type, identifier).
    """

    status_code: int = 500
    _error_code_value: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize APIError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        details : dict[str, Any] | None, optional
            Additional error context (default: None).
        """
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def error_code(self) -> ErrorCode:
        """Get the error code as an ErrorCode enum."""
        return ErrorCode(self._error_code_value)

    def to_problem_detail(self, instance: str, request_id: str) -> dict[str, Any]:
        """Convert to RFC 7807 Problem Detail dictionary.

        Parameters
        ----------
        instance : str
            URI reference of the specific occurrence.
        request_id : str
            Unique request identifier for correlation and debugging.

        Returns
        -------
        dict[str, Any]
            Dictionary with RFC 7807 fields suitable for ProblemDetail model.
        """
        return {
            "type": get_error_type_uri(self.error_code),
            "title": ERROR_TITLES.get(self.error_code, "Error"),
            "status": self.status_code,
            "detail": self.message,
            "instance": instance,
            "code": self.error_code.value,
            "request_id": request_id,
        }


class NotFoundError(APIError):
    """Resource not found (404).

    Examples
    --------
    >>> raise NotFoundError(resource_type="AudioFile", identifier="dQw4w9WgXcQ")
    """

    status_code: int = 404
    _error_code_value: str = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        identifier: str,
        hint: str | None = None,
    ) -> None:
        """
        Initialize NotFoundError.

        Parameters
        ----------
        resource_type : str
            The type of resource that was not found.
        identifier : str
            The identifier used to look up the resource.
        hint : str | None, optional
            Additional hint for the user (default: None).
        """
        self.resource_type = resource_type
        self.identifier = identifier
        message = f"{resource_type} '{identifier}' not found"
        if hint:
            message += f". {hint}"
        super().__init__(
            message=message,
            details={"resource_type": resource_type, "identifier": identifier},
        )


class AuthenticationError(APIError):
    """Missing or invalid credentials (401).

    Attributes
    ----------
    www_authenticate : str | None
        Value for the ``WWW-Authenticate`` response header.
    """

    status_code: int = 401
    _error_code_value: str = "NOT_AUTHENTICATED"

    def __init__(
        self,
        message: str = "Authentication required",
        www_authenticate: str | None = "Bearer",
    ) -> None:
        """
        Initialize AuthenticationError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Authentication required").
        www_authenticate : str | None, optional
            Challenge for the ``WWW-Authenticate`` header (default: "Bearer").
        """
        self.www_authenticate = www_authenticate
        super().__init__(message=message)


# Exit codes for CLI integration
EXIT_CODE_SUCCESS = 0
EXIT_CODE_GENERAL_ERROR = 1
EXIT_CODE_INVALID_ARGS = 2
EXIT_CODE_QUOTA_EXCEEDED = 3
EXIT_CODE_IN_PROGRESS = 4
EXIT_CODE_EXTRACTION_FAILED = 5
EXIT_CODE_INTERRUPTED = 130  # Standard Unix signal interrupt exit code
