"""
Global Exception Handling

Error taxonomy for the relay gateway and the FastAPI handlers that turn
it into structured error responses.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImageryRelayError(Exception):
    """Base exception for the relay gateway."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.details = details or {}
        super().__init__(self.message)


class UploadValidationError(ImageryRelayError):
    """Raised when the upload form is missing, malformed or over limits."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class SerializationError(ImageryRelayError):
    """Raised when a job descriptor cannot be encoded for the broker."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class BrokerUnavailableError(ImageryRelayError):
    """Raised when the message broker cannot be reached."""

    def __init__(self, message: str, topic: Optional[str] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        if topic:
            self.details["topic"] = topic


class StoreUnavailableError(ImageryRelayError):
    """Raised when the object store cannot be reached."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class StorageIOError(ImageryRelayError):
    """Raised when reading or writing an object fails mid-transfer."""

    def __init__(self, message: str, locator: Optional[str] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        if locator:
            self.details["locator"] = locator


class NotFoundError(ImageryRelayError):
    """Raised when an object locator does not exist in the store."""

    def __init__(self, message: str, locator: Optional[str] = None, **kwargs):
        super().__init__(message, code=404, **kwargs)
        if locator:
            self.details["locator"] = locator


class ReplyTimeoutError(ImageryRelayError):
    """Raised when no reply was delivered to a waiting request in time."""

    def __init__(self, timeout_seconds: float, **kwargs):
        super().__init__(
            "Timed out waiting for processing reply",
            code=408,
            **kwargs
        )
        self.details["timeout_seconds"] = timeout_seconds


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ImageryRelayError)
    async def relay_exception_handler(request: Request, exc: ImageryRelayError):
        request_id = exc.request_id or request_id_var.get()

        log = logger.warning if exc.code < 500 else logger.error
        log(
            "relay_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "request_id": request_id,
                "code": exc.code,
                "details": exc.details,
                "timestamp": _utc_timestamp()
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = request_id_var.get()

        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "request_id": request_id,
                "code": 500,
                "timestamp": _utc_timestamp()
            }
        )
