"""
Translation of service errors into HTTP responses.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from structlog import get_logger

from studyhub.core.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    StorageError,
    StudyhubError,
    ValidationError,
)

STATUS_CODES: list[tuple[type[StudyhubError], int]] = [
    (ValidationError, 400),
    (PermissionDenied, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateTransition, 409),
]


async def studyhub_error_handler(request: Request, exc: StudyhubError):
    for error_type, status_code in STATUS_CODES:
        if isinstance(exc, error_type):
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return await storage_error_handler(request, exc)


async def storage_error_handler(request: Request, exc: StudyhubError):
    # Internal details stay in the log.
    await get_logger().aerror(
        "api.storage_error", path=request.url.path, error=repr(exc.__cause__ or exc)
    )
    return JSONResponse(
        status_code=500, content={"detail": "The request could not be completed"}
    )


def add_exception_handlers(app: FastAPI) -> FastAPI:
    """
    Map the service error taxonomy onto status codes. Messages from
    validation, permission and conflict errors are shown to the caller
    verbatim; storage errors are reported generically.
    """
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(StudyhubError, studyhub_error_handler)
    return app
