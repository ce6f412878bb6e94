"""
Error taxonomy of the storage engine and the FastAPI handlers that render it.

Backend specific exceptions (botocore, OSError, sqlite3) are translated into these
classes before they leave the engine, so callers only ever see this hierarchy.
"""

import logging
import traceback
from typing import Optional

import pydantic
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for every error raised by the storage engine."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, code: Optional[str] = None, backend: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.backend = backend

    def __str__(self) -> str:
        return self.message


class InvalidInput(StorageError):
    """Bad document type, file name, size or MIME type. User fixable."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        if status_code is not None:
            self.status_code = status_code


class NotFound(StorageError):
    """Unknown document identifier or backend key."""

    status_code = status.HTTP_404_NOT_FOUND


class Unsupported(StorageError):
    """The backend (or its current configuration) cannot perform the operation."""

    status_code = status.HTTP_400_BAD_REQUEST


class RegionMismatch(StorageError):
    """
    The bucket lives in a different region than the client is configured for.

    Internal only: absorbed by the region resolver and never surfaced to callers.
    """

    def __init__(self, message: str, *, region: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.region = region


class AccessDenied(StorageError):
    """Credentials or bucket policy reject the request. Never retried."""

    status_code = status.HTTP_502_BAD_GATEWAY


class Transient(StorageError):
    """Network, timeout or 5xx failure. Retried, surfaced only after retries exhaust."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class BackendUnavailable(StorageError):
    """Remote backend misconfigured or unusable in a way retrying will not fix."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class IntegrityMismatch(StorageError):
    """Backend reported a size that differs from the declared size."""

    status_code = status.HTTP_502_BAD_GATEWAY


class MetadataError(StorageError):
    """The metadata store failed to read or write a document record."""


class ReconciliationRequired(StorageError):
    """Metadata and backend objects are known to have diverged. Needs an operator."""

    def __init__(self, message: str, *, document_id: Optional[int] = None, storage_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.document_id = document_id
        self.storage_key = storage_key


# Errors that make the upload pipeline try the local backend instead of failing.
FALLBACK_ERRORS = (AccessDenied, Unsupported, BackendUnavailable, Transient)


async def handle_storage_errors(request: Request, exc: StorageError) -> JSONResponse:
    """Render engine errors with the status code attached to their class."""
    if isinstance(exc, ReconciliationRequired):
        logger.critical(f"Reconciliation required on {request.method} {request.url.path}: {exc}")
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


async def handle_pydantic_validation_errors(request: Request, exc: pydantic.ValidationError) -> JSONResponse:
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": [
                {
                    "msg": error["msg"],
                    "input": str(error.get("input")),
                }
                for error in errors
            ]
        },
    )


async def handle_broad_exceptions(request: Request, call_next):
    """Handle any exception that propagates to the top of the middleware stack."""
    try:
        return await call_next(request)
    except Exception as e:  # noqa: BLE001
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {e}")
        logger.debug(traceback.format_exc())
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )
