"""Request ID middleware for request correlation and tracing.

Request ids propagate through a context variable, so log records emitted
anywhere below the request (services, repositories, exception handlers) can
carry the id without passing the request object around.

The middleware takes X-Request-ID from the incoming request, or generates a
UUID v4 when it is missing or unusable, and echoes it on the response.
"""

from __future__ import annotations

import contextvars
import logging
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.middleware.base import RequestResponseEndpoint

logger = logging.getLogger(__name__)

MAX_REQUEST_ID_LENGTH = 128

REQUEST_ID_HEADER = "X-Request-ID"

# Empty string means no request is active in this context
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def get_request_id() -> str:
    """Get the current request ID from context.

    Returns
    -------
    str
        The current request ID, or empty string outside of a request.
    """
    return request_id_var.get()


def _generate_request_id() -> str:
    return str(uuid.uuid4())


def _is_valid_request_id(value: str) -> bool:
    """Check that every character is ASCII printable (33-126)."""
    return all(33 <= ord(c) <= 126 for c in value)


def _sanitize_request_id(header_value: str | None) -> str:
    """Sanitize and validate a request ID header value.

    - None or empty string: generate new UUID v4
    - Non-ASCII-printable chars: generate new UUID v4, log WARNING
    - More than 128 chars: keep the first 128
    - Otherwise: return unchanged

    Parameters
    ----------
    header_value : str | None
        The raw X-Request-ID header value.

    Returns
    -------
    str
        A valid request ID (either sanitized input or newly generated).
    """
    if not header_value:
        return _generate_request_id()

    if not _is_valid_request_id(header_value):
        logger.warning(
            "X-Request-ID contains non-ASCII-printable characters, generating new ID"
        )
        return _generate_request_id()

    if len(header_value) > MAX_REQUEST_ID_LENGTH:
        logger.debug(
            "X-Request-ID truncated from %d to %d characters",
            len(header_value),
            MAX_REQUEST_ID_LENGTH,
        )
        return header_value[:MAX_REQUEST_ID_LENGTH]

    return header_value


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware that manages request ID propagation.

    Sets the id in the context variable and on ``request.state`` for the
    duration of the request and adds it to the response headers.

    Examples
    --------
    >>> from fastapi import FastAPI
    >>> from audiovista.api.middleware import RequestIdMiddleware
    >>> app = FastAPI()
    >>> app.add_middleware(RequestIdMiddleware)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with request ID propagation."""
        request_id = _sanitize_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(request_id)

        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)


class RequestIdFilter(logging.Filter):
    """Logging filter that adds ``request_id`` to every log record.

    Lets formatters use ``%(request_id)s``; records emitted outside a request
    get ``"-"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add request_id attribute to the log record."""
        record.request_id = request_id_var.get() or "-"
        return True
