"""Centralized exception handlers for FastAPI with RFC 7807 compliance.

Converts the audio cache's domain exceptions and the API layer exceptions
into RFC 7807 Problem Details responses, so every JSON endpoint reports
errors with the same structure. The streaming endpoints do not go through
these handlers: they answer with short plain-text bodies.

RFC 7807 Reference: https://tools.ietf.org/html/rfc7807
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from audiovista.api.middleware.request_id import get_request_id
from audiovista.api.schemas.responses import (
    ERROR_TITLES,
    ERROR_TYPE_BASE,
    ErrorCode,
    FieldError,
    ProblemDetail,
    ProblemJSONResponse,
    ValidationProblemDetail,
    get_error_type_uri,
)
from audiovista.exceptions import (
    APIError,
    AuthenticationError,
    DownloadInProgressError,
    ExtractionError,
    ExtractionToolMissingError,
    QuotaExceededError,
    RepositoryError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Constants for Detail Message Truncation
# =============================================================================

MAX_DETAIL_LENGTH = 4096
"""Maximum allowed length for detail messages before truncation."""

TRUNCATION_SUFFIX = "... (truncated)"
"""Suffix appended to truncated detail messages."""


# =============================================================================
# Helper Functions
# =============================================================================


def _truncate_detail(detail: str) -> str:
    """Truncate detail message if it exceeds maximum length."""
    if len(detail) <= MAX_DETAIL_LENGTH:
        return detail
    truncate_at = MAX_DETAIL_LENGTH - len(TRUNCATION_SUFFIX)
    return detail[:truncate_at] + TRUNCATION_SUFFIX


def _get_request_id_with_fallback(request: Request | None = None) -> str:
    """Get request ID from context variable with request.state fallback.

    Parameters
    ----------
    request : Request | None, optional
        The FastAPI request object for fallback (default: None).

    Returns
    -------
    str
        The request ID, or "-" if not available.
    """
    request_id = get_request_id()
    if request_id:
        return request_id

    if request is not None:
        state_request_id = getattr(request.state, "request_id", None)
        if state_request_id:
            return str(state_request_id)

    return "-"


def _create_problem_detail(
    code: ErrorCode,
    status: int,
    detail: str,
    instance: str,
    request: Request | None = None,
) -> ProblemDetail:
    """Create a ProblemDetail instance with request_id from context."""
    return ProblemDetail(
        type=get_error_type_uri(code),
        title=ERROR_TITLES.get(code, "Error"),
        status=status,
        detail=_truncate_detail(detail),
        instance=instance,
        code=code.value,
        request_id=_get_request_id_with_fallback(request),
    )


def _safe_problem_response(
    code: ErrorCode,
    status: int,
    detail: str,
    instance: str,
    headers: dict[str, str] | None = None,
    request: Request | None = None,
) -> ProblemJSONResponse:
    """Create ProblemJSONResponse with meta-error fallback.

    Attempts to create a proper RFC 7807 response. If serialization fails,
    returns a minimal hardcoded RFC 7807 response so the client always
    receives a valid error body.

    Parameters
    ----------
    code : ErrorCode
        The error code for the problem.
    status : int
        HTTP status code for the response.
    detail : str
        Human-readable explanation of the problem.
    instance : str
        URI reference of the specific occurrence.
    headers : dict[str, str] | None, optional
        Additional headers to include in the response.
    request : Request | None, optional
        The FastAPI request for fallback request_id retrieval.

    Returns
    -------
    ProblemJSONResponse
        RFC 7807 compliant JSON response.
    """
    try:
        problem = _create_problem_detail(code, status, detail, instance, request)
        return ProblemJSONResponse(
            content=problem.model_dump(),
            status_code=status,
            headers=headers,
        )
    except Exception as e:
        logger.error("Error serializing error response: %s", e, exc_info=True)
        return ProblemJSONResponse(
            content={
                "type": f"{ERROR_TYPE_BASE}/INTERNAL_ERROR",
                "title": "Internal Server Error",
                "status": 500,
                "detail": "An unexpected error occurred",
                "instance": instance,
                "code": "INTERNAL_ERROR",
                "request_id": _get_request_id_with_fallback(request),
            },
            status_code=500,
        )


# =============================================================================
# API Layer Exception Handlers
# =============================================================================


async def api_error_handler(request: Request, exc: APIError) -> ProblemJSONResponse:
    """Handle APIError subclasses and convert to RFC 7807 Problem Detail.

    Parameters
    ----------
    request : Request
        The incoming FastAPI request.
    exc : APIError
        The APIError exception that was raised.

    Returns
    -------
    ProblemJSONResponse
        RFC 7807 compliant JSON response with appropriate status code.
    """
    instance = str(request.url.path)

    return _safe_problem_response(
        code=exc.error_code,
        status=exc.status_code,
        detail=exc.message,
        instance=instance,
        request=request,
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> ProblemJSONResponse:
    """Handle Pydantic RequestValidationError and convert to RFC 7807 format.

    Parameters
    ----------
    request : Request
        The incoming FastAPI request.
    exc : RequestValidationError
        The Pydantic validation error.

    Returns
    -------
    ProblemJSONResponse
        RFC 7807 compliant JSON response with status 422 and errors array.
    """
    instance = str(request.url.path)

    try:
        errors = [
            FieldError(
                loc=list(error.get("loc", [])),
                msg=error.get("msg", ""),
                type=error.get("type", ""),
            )
            for error in exc.errors()
        ]

        validation_problem = ValidationProblemDetail(
            type=get_error_type_uri(ErrorCode.VALIDATION_ERROR),
            title=ERROR_TITLES[ErrorCode.VALIDATION_ERROR],
            status=422,
            detail="Request validation failed",
            instance=instance,
            code=ErrorCode.VALIDATION_ERROR.value,
            request_id=_get_request_id_with_fallback(request),
            errors=errors,
        )

        return ProblemJSONResponse(
            content=validation_problem.model_dump(),
            status_code=422,
        )
    except Exception as e:
        logger.error("Error serializing validation error response: %s", e, exc_info=True)
        return ProblemJSONResponse(
            content={
                "type": f"{ERROR_TYPE_BASE}/VALIDATION_ERROR",
                "title": "Validation Error",
                "status": 422,
                "detail": "Request validation failed",
                "instance": instance,
                "code": "VALIDATION_ERROR",
                "request_id": _get_request_id_with_fallback(request),
                "errors": [],
            },
            status_code=422,
        )


async def auth_error_handler(
    request: Request, exc: AuthenticationError
) -> ProblemJSONResponse:
    """Handle AuthenticationError, preserving the WWW-Authenticate challenge."""
    headers: dict[str, str] | None = None
    if exc.www_authenticate:
        headers = {"WWW-Authenticate": exc.www_authenticate}

    return _safe_problem_response(
        code=ErrorCode.NOT_AUTHENTICATED,
        status=401,
        detail=exc.message,
        instance=str(request.url.path),
        headers=headers,
        request=request,
    )


# =============================================================================
# Domain Exception Handlers
# =============================================================================


async def domain_validation_error_handler(
    request: Request, exc: ValidationError
) -> ProblemJSONResponse:
    """Malformed video id (or other domain input) -> 400."""
    return _safe_problem_response(
        code=ErrorCode.BAD_REQUEST,
        status=400,
        detail=exc.message,
        instance=str(request.url.path),
        request=request,
    )


async def download_in_progress_handler(
    request: Request, exc: DownloadInProgressError
) -> ProblemJSONResponse:
    """A download for the same video already holds the claim -> 409."""
    return _safe_problem_response(
        code=ErrorCode.DOWNLOAD_IN_PROGRESS,
        status=409,
        detail=exc.message,
        instance=str(request.url.path),
        request=request,
    )


async def quota_exceeded_handler(
    request: Request, exc: QuotaExceededError
) -> ProblemJSONResponse:
    """Audio cache at or above the admission threshold -> 507."""
    return _safe_problem_response(
        code=ErrorCode.INSUFFICIENT_STORAGE,
        status=507,
        detail=exc.message,
        instance=str(request.url.path),
        request=request,
    )


async def extraction_error_handler(
    request: Request, exc: ExtractionError
) -> ProblemJSONResponse:
    """Handle extraction tool failures.

    - tool binary missing: 503
    - wall-clock bound hit: 504
    - anything else (nonzero exit, empty result): 500

    The tool's own output is logged, never returned to the client.

    Parameters
    ----------
    request : Request
        The incoming FastAPI request.
    exc : ExtractionError
        The extraction failure.

    Returns
    -------
    ProblemJSONResponse
        RFC 7807 compliant JSON response.
    """
    instance = str(request.url.path)
    logger.error(
        "Extraction failed for %s: %s (exit_code=%s, stderr=%s)",
        instance,
        exc.message,
        exc.exit_code,
        exc.stderr,
    )

    if isinstance(exc, ExtractionToolMissingError):
        return _safe_problem_response(
            code=ErrorCode.SERVICE_UNAVAILABLE,
            status=503,
            detail="Audio extraction tool is not installed",
            instance=instance,
            request=request,
        )
    if exc.timed_out:
        return _safe_problem_response(
            code=ErrorCode.GATEWAY_TIMEOUT,
            status=504,
            detail="Timed out getting audio URL",
            instance=instance,
            request=request,
        )
    return _safe_problem_response(
        code=ErrorCode.INTERNAL_ERROR,
        status=500,
        detail="Failed to get audio URL",
        instance=instance,
        request=request,
    )


async def repository_error_handler(
    request: Request, exc: RepositoryError
) -> ProblemJSONResponse:
    """Handle RepositoryError with a generic detail; the cause is logged."""
    logger.error(
        "Repository error: %s (operation=%s, entity=%s)",
        exc.message,
        exc.operation,
        exc.entity_type,
        exc_info=exc.original_error,
    )

    return _safe_problem_response(
        code=ErrorCode.DATABASE_ERROR,
        status=500,
        detail="A database error occurred",
        instance=str(request.url.path),
        request=request,
    )


async def generic_error_handler(
    request: Request, exc: Exception
) -> ProblemJSONResponse:
    """Handle unexpected exceptions and convert to RFC 7807 Problem Detail.

    Internal error details are not exposed to the client. The full stack
    trace is logged.

    Parameters
    ----------
    request : Request
        The incoming FastAPI request.
    exc : Exception
        The unhandled exception.

    Returns
    -------
    ProblemJSONResponse
        RFC 7807 compliant JSON response with 500 status and generic message.
    """
    logger.exception("Unhandled exception: %s", exc)

    return _safe_problem_response(
        code=ErrorCode.INTERNAL_ERROR,
        status=500,
        detail="An unexpected error occurred",
        instance=str(request.url.path),
        request=request,
    )


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app.

    Parameters
    ----------
    app : FastAPI
        The FastAPI application instance.

    Examples
    --------
    >>> from fastapi import FastAPI
    >>> from audiovista.api.exception_handlers import register_exception_handlers
    >>> app = FastAPI()
    >>> register_exception_handlers(app)
    """
    # APIError subclasses (NotFound, BadRequest, Conflict, InsufficientStorage...)
    app.add_exception_handler(APIError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AuthenticationError, auth_error_handler)  # type: ignore[arg-type]

    # Domain exceptions raised by the audio services
    app.add_exception_handler(ValidationError, domain_validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DownloadInProgressError, download_in_progress_handler)  # type: ignore[arg-type]
    app.add_exception_handler(QuotaExceededError, quota_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ExtractionError, extraction_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RepositoryError, repository_error_handler)  # type: ignore[arg-type]

    # Catch-all
    app.add_exception_handler(Exception, generic_error_handler)
