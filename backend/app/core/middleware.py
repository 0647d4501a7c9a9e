"""
Request middleware and exception handlers.
Provides request_id injection, timing and the error envelope for REST.
"""
import time
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.responses import error_body, error_response
from app.core.exceptions import RealtimeError
from app.core.logging import (
    actor_id_var,
    api_logger,
    elapsed_ms,
    generate_request_id,
    get_request_id,
    request_id_var,
    request_start_var,
)

QUIET_PATHS = ('/health', '/readyz')


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    1. Generates/propagates request_id for tracing
    2. Tracks request timing
    3. Logs request/response summary
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()

        request_id_var.set(request_id)
        request_start_var.set(time.time())
        request.state.request_id = request_id

        path = request.url.path
        quiet = path.endswith(QUIET_PATHS)
        if not quiet:
            api_logger.debug(
                f"{request.method} {path}",
                client=request.client.host if request.client else 'unknown',
            )

        try:
            response = await call_next(request)
            response.headers['X-Request-ID'] = request_id

            if not quiet:
                duration = elapsed_ms(request_start_var.get())
                log_level = 'info' if response.status_code < 400 else 'warning'
                getattr(api_logger, log_level)(
                    f"{request.method} {path} -> {response.status_code}",
                    duration_ms=duration,
                    status=response.status_code,
                )
            return response

        except Exception as e:
            duration = elapsed_ms(request_start_var.get())
            api_logger.error(
                f"{request.method} {path} -> 500 (unhandled)",
                error=e,
                duration_ms=duration,
            )
            return JSONResponse(
                status_code=500,
                content=error_body('internal_error', 'Internal server error', request_id),
                headers={'X-Request-ID': request_id},
            )
        finally:
            request_id_var.set(None)
            actor_id_var.set(None)
            request_start_var.set(None)


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'


async def realtime_exception_handler(request: Request, exc: RealtimeError) -> JSONResponse:
    """Map the error taxonomy onto the REST error envelope."""
    log = api_logger.error if exc.status_code >= 500 else api_logger.warning
    log(
        f"{exc.code} in {request.method} {request.url.path}: {exc.message}",
        status=exc.status_code,
    )
    return error_response(exc, _request_id(request))


async def validation_exception_handler(request: Request, exc) -> JSONResponse:
    """
    Handler for RequestValidationError - reported as invalid_payload.
    """
    errors = [
        {
            'field': '.'.join(str(loc) for loc in error.get('loc', [])),
            'message': error.get('msg', 'Validation error'),
        }
        for error in exc.errors()
    ]
    api_logger.warning(
        f"Validation error in {request.method} {request.url.path}",
        errors=errors,
    )
    message = f"{errors[0]['field']}: {errors[0]['message']}" if errors else 'Invalid payload'
    return JSONResponse(
        status_code=400,
        content=error_body('invalid_payload', message, _request_id(request)),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    Returns the error envelope with request_id for debugging.
    """
    request_id = _request_id(request)
    api_logger.error(
        f"Unhandled exception in {request.method} {request.url.path}",
        error=exc,
        path=str(request.url.path),
    )
    return JSONResponse(
        status_code=500,
        content=error_body('internal_error', 'Internal server error', request_id),
        headers={'X-Request-ID': request_id},
    )
