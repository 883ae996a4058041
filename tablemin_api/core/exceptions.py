"""Map engine errors to HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from tablemin.errors import (
    ExecutionError,
    IdentifierRejected,
    InvalidArgument,
    NotFound,
    ReadOnlyViolation,
    TableminError,
)


def status_for(exc: TableminError) -> int:
    """HTTP status code for an engine error."""
    # NotFound first: TableNotFound is also an IdentifierRejected
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (InvalidArgument, IdentifierRejected)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ReadOnlyViolation):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, ExecutionError):
        if exc.is_integrity_error:
            return status.HTTP_409_CONFLICT
        if exc.is_timeout:
            return status.HTTP_504_GATEWAY_TIMEOUT
        if exc.is_connection_error:
            return status.HTTP_503_SERVICE_UNAVAILABLE
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def tablemin_error_handler(request: Request, exc: TableminError) -> JSONResponse:
    """Render an engine error as {"detail", "error", "code"}."""
    return JSONResponse(
        status_code=status_for(exc),
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "code": getattr(exc, "code", None),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TableminError, tablemin_error_handler)
