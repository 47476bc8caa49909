"""
HTTP middleware and exception handlers.

Request order through the stack:

    SecurityHeaders -> CorrelationId -> RequestLogging -> routes

Every error response, whether raised as an AppException, rejected by request
validation or unexpected, uses the {"error": {...}} envelope and carries the
request's X-Correlation-ID.
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mailroom.core.exceptions import AppException, ErrorCode
from mailroom.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

_PRODUCTION_HEADERS = {
    "Content-Security-Policy": "upgrade-insecure-requests",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _error_response(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopts the caller's X-Correlation-ID or starts a new one"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()
        logger.info(
            f"Request started: {route}",
            extra_data={"client_host": request.client.host if request.client else None},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {route}",
                extra_data={"duration_ms": _elapsed_ms(started), "error": str(e)},
                exc_info=True,
            )
            raise

        log = logger.info if response.status_code < 400 else logger.warning
        log(
            f"Request completed: {route}",
            extra_data={
                "status_code": response.status_code,
                "duration_ms": _elapsed_ms(started),
            },
        )
        return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__} on {request.url.path}: {exc.message}",
        extra_data={"error_code": exc.error_code.value, "details": exc.details},
    )
    return _error_response(exc.status_code, exc.to_dict())


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies, reported in the same envelope as AppException"""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.warning(
        f"Request validation failed on {request.url.path}",
        extra_data={"errors": errors},
    )
    return _error_response(
        422,
        {
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": "Request body is invalid",
                "details": {"errors": errors},
            }
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # The body stays generic; the exception itself only goes to the logs
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}",
        extra_data={"error": str(exc)},
        exc_info=exc,
    )
    return _error_response(
        500,
        {
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Sets X-Content-Type-Options on every response.

    Outside DEBUG it also sets HSTS, CSP upgrade-insecure-requests,
    X-Frame-Options and Referrer-Policy. Local development runs over plain
    HTTP, so DEBUG leaves those out.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._extra_headers = {} if debug else _PRODUCTION_HEADERS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        for name, value in self._extra_headers.items():
            response.headers[name] = value
        return response


def setup_middleware(app: FastAPI, *, debug: bool = False) -> None:
    # add_middleware prepends, so the last one added runs first
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=debug)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
