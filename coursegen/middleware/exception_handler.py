"""Exception handlers that turn coursegen errors into JSON responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from ..core.logging_config import redact
from ..exceptions import CourseGenException, StoreUnavailable

logger = logging.getLogger(__name__)


def _error_response(request: Request, exc: CourseGenException) -> JSONResponse:
    # 4xx is the caller's problem; only 5xx deserves ERROR.
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        level,
        f"{exc.error_code.value} on {request.method} {request.url.path}: {exc.message}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def coursegen_exception_handler(request: Request, exc: CourseGenException) -> JSONResponse:
    """
    Render a CourseGenException as ``{"error", "message", "details"}``.

    No stack trace is included in the response.
    """
    return _error_response(request, exc)


async def database_unavailable_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    """Answer 503 when the job store cannot be reached, instead of a bare 500."""
    reason = str(exc.orig) if exc.orig is not None else str(exc)
    return _error_response(request, StoreUnavailable(redact(reason)))
