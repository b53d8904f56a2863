"""Shared OpenAPI response definitions for RFC 7807 compliance.

Reusable response definitions so every endpoint exposes the same error
schema in the OpenAPI documentation.
"""

from __future__ import annotations

from typing import Any

from audiovista.api.schemas.responses import (
    ProblemDetail,
    ValidationProblemDetail,
)

PROBLEM_JSON_MEDIA_TYPE = "application/problem+json"

# Type alias for FastAPI responses parameter
ResponsesType = dict[int | str, dict[str, Any]]


def _problem(description: str) -> dict[str, Any]:
    return {
        "model": ProblemDetail,
        "description": description,
        "content": {PROBLEM_JSON_MEDIA_TYPE: {}},
    }


BAD_REQUEST_RESPONSE: ResponsesType = {400: _problem("Malformed video id")}
UNAUTHORIZED_RESPONSE: ResponsesType = {401: _problem("Authentication required")}
NOT_FOUND_RESPONSE: ResponsesType = {404: _problem("Resource not found")}
CONFLICT_RESPONSE: ResponsesType = {409: _problem("Download already in progress")}
VALIDATION_ERROR_RESPONSE: ResponsesType = {
    422: {
        "model": ValidationProblemDetail,
        "description": "Validation error",
        "content": {PROBLEM_JSON_MEDIA_TYPE: {}},
    }
}
INTERNAL_ERROR_RESPONSE: ResponsesType = {500: _problem("Internal server error")}
SERVICE_UNAVAILABLE_RESPONSE: ResponsesType = {
    503: _problem("Extraction tool not installed")
}
GATEWAY_TIMEOUT_RESPONSE: ResponsesType = {
    504: _problem("Extraction tool timed out")
}
INSUFFICIENT_STORAGE_RESPONSE: ResponsesType = {
    507: _problem("Audio cache quota reached")
}

# Combined response sets for common endpoint patterns

STANDARD_ERRORS: ResponsesType = {
    **VALIDATION_ERROR_RESPONSE,
    **INTERNAL_ERROR_RESPONSE,
}
"""Standard errors for most endpoints (422, 500)."""

DOWNLOAD_ERRORS: ResponsesType = {
    **BAD_REQUEST_RESPONSE,
    **CONFLICT_RESPONSE,
    **INSUFFICIENT_STORAGE_RESPONSE,
    **STANDARD_ERRORS,
}
"""Errors for endpoints that start or remove downloads."""

RESOLVE_ERRORS: ResponsesType = {
    **SERVICE_UNAVAILABLE_RESPONSE,
    **GATEWAY_TIMEOUT_RESPONSE,
    **STANDARD_ERRORS,
}
"""Errors for endpoints that run the extraction tool synchronously."""

AUDIO_STREAM_RESPONSES: ResponsesType = {
    200: {
        "content": {"audio/mpeg": {}, "audio/mp4": {}, "audio/webm": {}},
        "description": "Full audio body",
    },
    206: {"description": "Partial content for a byte range"},
    400: {"content": {"text/plain": {}}, "description": "Invalid video ID"},
    416: {"description": "Requested range not satisfiable"},
    500: {"content": {"text/plain": {}}, "description": "Failed to get audio URL"},
    502: {"content": {"text/plain": {}}, "description": "Upstream rejected the URL"},
}
"""Responses of the byte-serving endpoints (plain-text errors)."""
