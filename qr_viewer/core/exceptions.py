"""
Global Exception Handling

A closed set of error codes raised where the error originates and mapped
once, at the HTTP boundary, to a structured response:

    {"success": false, "error": "...", "code": "UPLOAD_NOT_FOUND", "timestamp": "..."}
"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from qr_viewer.core.logging import get_logger, upload_id_var

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Every error kind a client can observe."""
    NO_FILE = "NO_FILE"
    INVALID_FILE = "INVALID_FILE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    UPLOAD_NOT_FOUND = "UPLOAD_NOT_FOUND"
    QR_NOT_FOUND = "QR_NOT_FOUND"
    QR_PROCESSING_ERROR = "QR_PROCESSING_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    SCHEDULING_ERROR = "SCHEDULING_ERROR"
    QR_GENERATION_FAILED = "QR_GENERATION_FAILED"
    MISSING_TEXT = "MISSING_TEXT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"


def _error_body(message: str, code: ErrorCode, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body = {
        "success": False,
        "error": message,
        "code": code.value,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
    if details:
        body["details"] = details
    return body


# =============================================================================
# Custom Exceptions
# =============================================================================

class QRViewerException(Exception):
    """Base exception for the QR upload viewer."""

    status_code: int = 500
    default_code: ErrorCode = ErrorCode.SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        upload_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.upload_id = upload_id or upload_id_var.get()
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        return _error_body(self.message, self.code, self.details)


class ValidationError(QRViewerException):
    """Rejected input. Nothing has been persisted."""
    status_code = 400
    default_code = ErrorCode.INVALID_FILE


class FileTooLargeError(ValidationError):
    status_code = 413
    default_code = ErrorCode.FILE_TOO_LARGE


class NotFoundError(QRViewerException):
    status_code = 404
    default_code = ErrorCode.UPLOAD_NOT_FOUND


class ProcessingError(QRViewerException):
    """Raster decode failure. Recorded on the item, never returned to the uploader."""
    status_code = 422
    default_code = ErrorCode.QR_PROCESSING_ERROR


class PersistenceError(QRViewerException):
    status_code = 500
    default_code = ErrorCode.DATABASE_ERROR


class SchedulingError(QRViewerException):
    status_code = 500
    default_code = ErrorCode.SCHEDULING_ERROR


class ArtifactError(QRViewerException):
    status_code = 500
    default_code = ErrorCode.QR_GENERATION_FAILED


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI, debug: bool = False):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(QRViewerException)
    async def qr_viewer_exception_handler(request: Request, exc: QRViewerException):
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "request_failed",
            error=exc.message,
            code=exc.code.value,
            status_code=exc.status_code,
            upload_id=exc.upload_id,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", [])), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=_error_body("Invalid request", ErrorCode.VALIDATION_ERROR, {"errors": errors}),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            code = ErrorCode.ROUTE_NOT_FOUND
            message = f"Route {request.method} {request.url.path} not found"
        else:
            code = ErrorCode.SERVER_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_ERROR
            message = str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=_error_body(message, code))

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(
            "database_error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500,
            content=_error_body("Database operation failed", ErrorCode.DATABASE_ERROR),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )
        message = str(exc) if debug else "Internal server error"
        return JSONResponse(
            status_code=500,
            content=_error_body(message, ErrorCode.SERVER_ERROR),
        )
