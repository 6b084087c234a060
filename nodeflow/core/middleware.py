"""Request middleware: error mapping, request tracing and timing."""

import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    GraphValidationError,
    NotFoundError,
    TransientError,
    WorkflowEngineError,
    create_error_response,
)
from .logging import get_logger, set_logging_context, clear_logging_context


logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def status_code_for_error(error: WorkflowEngineError) -> int:
    """HTTP status for an engine error that escaped an endpoint."""
    if isinstance(error, GraphValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, TransientError):
        return 503
    return 500


def _internal_error_body(error: Exception, request_id: str) -> Dict[str, Any]:
    return {
        "error": "InternalServerError",
        "message": "An unexpected error occurred",
        "details": {"error_type": type(error).__name__, "timestamp": datetime.utcnow().isoformat()},
        "request_id": request_id,
    }


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and turns uncaught errors into JSON responses.

    The id is taken from the X-Request-ID header when the client sends one
    and is echoed back on every response. It is also put in the logging
    context for the duration of the request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()

        set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        )
        logger.info(f"Request started: {route}")
        if request.query_params:
            logger.debug(f"Query params: {dict(request.query_params)}")

        try:
            response = await call_next(request)
            logger.info(f"Request completed: {route} - Status: {response.status_code} - "
                        f"Duration: {time.perf_counter() - started:.3f}s")

        except WorkflowEngineError as e:
            logger.warning(f"Workflow engine error: {route} - {e.error_code}: {e.message}",
                           extra={"extra_fields": {"error": e.to_dict()}})
            response = JSONResponse(status_code=status_code_for_error(e), content=create_error_response(e))

        except Exception as e:
            logger.error(f"Unexpected error: {route} - {e}", exc_info=True)
            response = JSONResponse(status_code=500, content=_internal_error_body(e, request_id))

        finally:
            clear_logging_context()

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Adds X-Response-Time and warns about requests slower than the threshold."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        if elapsed > self.slow_request_threshold:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {elapsed:.3f}s "
                           f"(threshold {self.slow_request_threshold}s)")

        response.headers["X-Response-Time"] = f"{elapsed:.3f}s"
        return response
