"""Maps domain errors onto HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lifesync.core.errors import (
    ConnectionNotFoundError,
    ConnectionStateError,
    CredentialError,
    IndexConsistencyError,
    LifeSyncError,
    PolicyNotFoundError,
    ProviderConnectionError,
    UnsupportedProviderError,
    ValidationError,
)
from lifesync.core.logging import get_logger

log = get_logger("api.errors")

_STATUS = (
    (ValidationError, 422),
    (UnsupportedProviderError, 400),
    (ConnectionNotFoundError, 404),
    (PolicyNotFoundError, 404),
    (ConnectionStateError, 409),
    (CredentialError, 409),
    (ProviderConnectionError, 502),
    (IndexConsistencyError, 500),
)


def status_for(exc: LifeSyncError) -> int:
    for exc_type, status in _STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


async def lifesync_error_handler(request: Request, exc: LifeSyncError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc}")
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=status, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LifeSyncError, lifesync_error_handler)
