"""
FlowGate API - middleware and exception handlers.
"""

import time
from typing import Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from flowgate.core.exceptions import (
    AnalysisNotFoundError,
    BackendError,
    ConfigurationError,
    FlowgateError,
    NoResultError,
    ParameterValidationError,
)
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging API requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable):
        # Generate request ID for tracing
        request_id = str(uuid4())[:8]

        start_time = time.time()
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            process_time = time.time() - start_time
            logger.error(
                f"[{request_id}] Request failed after {process_time:.3f}s: {exc}",
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "message": "Internal server error",
                    "error_code": "INTERNAL_ERROR",
                    "request_id": request_id,
                },
            )

        process_time = time.time() - start_time
        logger.info(
            f"[{request_id}] {response.status_code} - Processed in {process_time:.3f}s"
        )
        response.headers["X-Request-ID"] = request_id
        return response


def setup_middleware(app: FastAPI, settings) -> None:
    """Configure all middleware for the FastAPI application."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=getattr(settings, "ALLOWED_ORIGINS", ["*"]),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Accept",
            "Content-Type",
            "X-Requested-With",
            "X-Request-ID",
            "X-User",
            "X-User-Roles",
            "X-Callback-Token",
        ],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    logger.debug("FastAPI middleware setup complete")


def _status_code_for(exc: FlowgateError) -> int:
    if isinstance(exc, ParameterValidationError):
        return 422
    if isinstance(exc, ConfigurationError):
        return 400
    if isinstance(exc, (AnalysisNotFoundError, NoResultError)):
        return 404
    if isinstance(exc, BackendError):
        return 502
    return 500


async def flowgate_exception_handler(request: Request, exc: FlowgateError):
    """Render FlowGate errors with a consistent body."""
    status_code = _status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    content = {
        "success": False,
        "message": exc.message,
        "error_code": type(exc).__name__,
    }
    if isinstance(exc, ParameterValidationError):
        content["field_errors"] = exc.field_errors
    return JSONResponse(status_code=status_code, content=content)


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "error_code": "INTERNAL_ERROR",
        },
    )
