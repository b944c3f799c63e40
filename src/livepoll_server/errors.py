"""Global exception handlers — map SDK exceptions to HTTP status codes.

The SDK raises ``LivePollError`` subclasses (all ``ValueError``s) that
carry their own code, retry flag and user-facing message.  Rather than
catching these in every route, global handlers pick the HTTP status from
the error class.  Plain ``ValueError`` falls back to message patterns.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from livepoll_core.errors import (
    DeliveryFailed,
    InvalidToken,
    LivePollError,
    NoPresentableQuestions,
    NotFound,
    PersistFailed,
    RateLimited,
    UploadFailed,
    UploadFailureCause,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

# --- SDK error classes and their HTTP status codes ---
# Checked in order; first isinstance match wins.
_STATUS_BY_ERROR: list[tuple[type[LivePollError], int]] = [
    (ValidationFailed, 400),
    (InvalidToken, 400),
    (NotFound, 404),
    (NoPresentableQuestions, 409),
    (RateLimited, 429),
    (PersistFailed, 503),
    (DeliveryFailed, 502),
]

# --- Keyword patterns in plain ValueError messages ---
_VALUE_ERROR_PATTERNS: list[tuple[str, int]] = [
    ("not found", 404),
    ("already exists", 409),
]

# --- Client-safe messages keyed by HTTP status code ---
_SAFE_MESSAGES: dict[int, str] = {
    404: "Resource not found",
    409: "Resource already exists",
    400: "Invalid request",
}


def status_for(exc: LivePollError) -> int:
    if isinstance(exc, UploadFailed):
        return 413 if exc.cause is UploadFailureCause.TOO_LARGE else 502
    for error_cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return code
    return 400


async def livepoll_error_handler(request: Request, exc: LivePollError) -> JSONResponse:
    """Map an SDK error to its status; the client sees only the safe message.

    The exception's own message (ids, driver errors) is logged server-side
    but never sent to the client.
    """
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log("%s [%d] at %s: %s", type(exc).__name__, status, request.url, exc)

    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Map a plain ``ValueError`` to 404/409/400 by message keyword."""
    msg = str(exc)
    status = 400
    for pattern, code in _VALUE_ERROR_PATTERNS:
        if pattern in msg.lower():
            status = code
            break

    logger.warning("ValueError [%d] at %s: %s", status, request.url, msg)
    return JSONResponse(
        status_code=status,
        content={"detail": _SAFE_MESSAGES.get(status, "Invalid request")},
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
