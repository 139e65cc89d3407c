"""
Global exception handlers for FastAPI.

Client errors (bad session id, empty message) are reported with their
message. Everything else, configuration and persistence failures
included, is logged in full and answered with a generic
"Processing failed" body.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import structlog

from avatar_engine.core.exceptions import (
    AvatarEngineError,
    ConfigurationError,
    PersistenceError,
    SessionError,
    ValidationError,
)

log = structlog.get_logger(__name__)

PROCESSING_FAILED = "Processing failed"


def _error_response(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "type": error_type,
                "message": message,
            }
        },
    )


def setup_exception_handlers(app: FastAPI):
    """Register custom exception handlers with the FastAPI application.

    ValidationError maps to 400, SessionError to 404; every other failure
    is a 500 with details kept out of the response.
    """

    @app.exception_handler(AvatarEngineError)
    async def avatar_engine_error_handler(
        request: Request,
        exc: AvatarEngineError,
    ) -> JSONResponse:
        """Handle AvatarEngineError exceptions with appropriate HTTP status codes."""
        log_ctx = log.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )

        if isinstance(exc, ValidationError):
            log_ctx.warning("request_error", message=exc.message, status_code=400)
            return _error_response(
                status.HTTP_400_BAD_REQUEST, type(exc).__name__, exc.message
            )

        if isinstance(exc, SessionError):
            log_ctx.warning("request_error", message=exc.message, status_code=404)
            return _error_response(
                status.HTTP_404_NOT_FOUND, type(exc).__name__, exc.message
            )

        if isinstance(exc, ConfigurationError):
            log_ctx.error("configuration_error", message=exc.message)
        elif isinstance(exc, PersistenceError):
            log_ctx.error("persistence_error", message=exc.message)
        else:
            log_ctx.error("processing_error", message=exc.message, exc_info=exc)

        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "ProcessingError", PROCESSING_FAILED
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle all unhandled exceptions with HTTP 500 status.

        Catches any exception not handled by specific handlers, logs the error
        with full context, and returns a generic 500 response.
        """
        log_ctx = log.bind(
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )

        log_ctx.error(
            "unhandled_exception",
            message=str(exc),
            exc_info=exc,
        )

        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "ProcessingError", PROCESSING_FAILED
        )
