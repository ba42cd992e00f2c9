"""
Request middleware and error rendering.

Every error leaves the API in one envelope:

    {"error": {...}, "correlation_id": "...", "request_path": "/api/v1/..."}
"""

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import SubHubError
from .logging import bind_request_context, clear_request_context

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if existing:
        return str(existing)
    return request.headers.get(CORRELATION_HEADER, str(uuid.uuid4()))


def error_response(request: Request, status_code: int, error: dict) -> JSONResponse:
    correlation_id = _correlation_id(request)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "correlation_id": correlation_id,
            "request_path": request.url.path,
        },
        headers={CORRELATION_HEADER: correlation_id},
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Converts platform errors to JSON responses and logs every request.

    Features:
    - Renders SubHubError with its own status code
    - Hides unexpected errors behind a generic 500
    - Adds correlation IDs for request tracing
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER, str(uuid.uuid4()))
        request.state.correlation_id = correlation_id
        bind_request_context(correlation_id, method=request.method, path=request.url.path)
        start_time = time.time()

        try:
            response = await call_next(request)
        except SubHubError as e:
            log = logger.warning if e.status_code < 500 else logger.error
            log(
                "request.error",
                error_code=e.error_code,
                error_message=e.message,
                error_context=e.context,
                duration=time.time() - start_time,
            )
            return error_response(request, e.status_code, e.to_dict())
        except Exception as e:
            logger.exception("request.unexpected_error", error=str(e), duration=time.time() - start_time)
            return error_response(
                request,
                500,
                {
                    "error_code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred processing your request",
                    "status_code": 500,
                    "recovery_hint": "Please try again later or contact support if the issue persists",
                },
            )
        finally:
            clear_request_context()

        logger.debug(
            "request.completed",
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=time.time() - start_time,
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body and query validation failures in the error envelope."""
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    message = details[0]["message"] if details else "Invalid request"
    logger.info("request.validation_failed", path=request.url.path, errors=details)
    return error_response(
        request,
        422,
        {
            "error_code": "VALIDATION_ERROR",
            "message": message,
            "status_code": 422,
            "context": {"errors": details},
        },
    )


def setup_error_handling(app: FastAPI) -> None:
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
