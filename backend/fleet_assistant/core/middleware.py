"""
Request context middleware.

- Takes the trace id from X-Trace-ID / X-Request-ID, the active OpenTelemetry
  span, or generates one
- Generates a per-request id
- Binds both into the logging context for the lifetime of the request
- Echoes them back as response headers and records RED metrics
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    clear_request_context,
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_trace_id,
)
from .metrics import record_http_request
from .tracing import (
    StatusCode,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)

logger = get_logger(__name__)


def _format_otel_trace_id(otel_trace_id: str) -> str:
    """Render a 32-char hex trace id in UUID layout so all trace ids look alike."""
    if len(otel_trace_id) != 32:
        return otel_trace_id
    return (
        f"{otel_trace_id[0:8]}-{otel_trace_id[8:12]}-{otel_trace_id[12:16]}-"
        f"{otel_trace_id[16:20]}-{otel_trace_id[20:32]}"
    )


def resolve_trace_id(request: Request) -> str:
    """Pick the trace id for a request: caller header, then OpenTelemetry, then a new one."""
    trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
    if trace_id:
        return trace_id
    otel_trace_id = get_trace_id_from_context()
    if otel_trace_id:
        return _format_otel_trace_id(otel_trace_id)
    return generate_trace_id()


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Bind trace/request ids to the request and surface them in responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = resolve_trace_id(request)
        request_id = generate_request_id()
        set_trace_id(trace_id)
        set_request_id(request_id)

        start_time = time.time()
        request.state.start_time = start_time

        with get_tracer().start_as_current_span("http.request"):
            set_span_attribute("http.method", request.method)
            set_span_attribute("http.route", request.url.path)
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=request.client.host if request.client else None,
            )

            try:
                response = await call_next(request)
            except Exception as e:
                process_time = time.time() - start_time
                record_exception(e)
                set_span_status(StatusCode.ERROR, str(e))
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=500,
                    duration_seconds=process_time,
                )
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    error_type=type(e).__name__,
                    latency_ms=int(process_time * 1000),
                    exc_info=True,
                )
                raise
            else:
                process_time = time.time() - start_time
                set_span_attribute("http.status_code", response.status_code)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration_seconds=process_time,
                )
                logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    latency_ms=int(process_time * 1000),
                )
                response.headers["X-Trace-ID"] = trace_id
                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                clear_request_context()
