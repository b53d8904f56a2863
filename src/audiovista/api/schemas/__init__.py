"""API schema exports.

Centralized export of the API schemas for convenient imports throughout
the application.
"""

from audiovista.api.schemas.audio import AudioUrlResponse, CleanupResponse
from audiovista.api.schemas.responses import (
    ApiResponse,
    ErrorCode,
    FieldError,
    ProblemDetail,
    ProblemJSONResponse,
    ValidationProblemDetail,
)

__all__ = [
    "ApiResponse",
    "AudioUrlResponse",
    "CleanupResponse",
    "ErrorCode",
    "FieldError",
    "ProblemDetail",
    "ProblemJSONResponse",
    "ValidationProblemDetail",
]
