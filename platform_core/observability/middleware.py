"""
Flask request middleware: trace-context and correlation-ID propagation.

For every request:
1. Extracts the incoming W3C ``traceparent`` / ``tracestate``.
2. Adopts a valid ``X-Correlation-ID`` header or generates a fresh id, and
   binds it in the :class:`Logger` so every entry of the request carries it.
3. Opens a server span parented on the incoming context and keeps it active
   until teardown, so spans created by view code become its children.
4. Echoes ``traceparent`` and ``X-Correlation-ID`` on the response.
"""

import time
from typing import Optional

from flask import Flask, g, request
from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from ..config import tracer_service_name
from ..constants import CORRELATION_ID_HEADER
from .correlation import generate_correlation_id, is_valid_correlation_id
from .logging import Logger
from .trace_context import extract_trace_context, inject_trace_context
from .tracing import (
    SpanOptions,
    create_span,
    get_service_name,
    initialize_tracer,
    span_to_trace_context,
)


class RequestTracer:
    """Flask middleware: correlation ids, server spans and header propagation.

    Usage::

        RequestTracer(app, logger=Logger())
    """

    def __init__(
        self,
        app: Flask,
        *,
        logger: Optional[Logger] = None,
        service_name: Optional[str] = None,
    ):
        """
        Args:
            app: The Flask application.
            logger: Optional initialized ``Logger`` for one entry per request.
            service_name: Tracer name used if the tracer is not bound yet.
        """
        self.app = app
        self.logger = logger
        self.service_name = service_name
        self._install(app)

    # ── installation ─────────────────────────────────────────────

    def _install(self, app: Flask) -> None:
        app.before_request(self._before)
        app.after_request(self._after)
        app.teardown_request(self._teardown)

    def _ensure_tracer(self) -> None:
        if get_service_name() is None:
            initialize_tracer(self.service_name or tracer_service_name())

    # ── hooks ────────────────────────────────────────────────────

    def _before(self) -> None:
        self._ensure_tracer()

        incoming = extract_trace_context(request.headers)
        header_id = request.headers.get(CORRELATION_ID_HEADER, "")
        if is_valid_correlation_id(header_id):
            correlation_id = header_id
        else:
            correlation_id = generate_correlation_id()
        Logger().set_correlation_id(correlation_id)

        span = create_span(
            f"{request.method} {request.path}",
            SpanOptions(
                attributes={"http.method": request.method, "http.target": request.path},
                parent=incoming,
                correlation_id=correlation_id,
                kind=SpanKind.SERVER,
            ),
        )

        g.correlation_id = correlation_id
        g.request_span = span
        g.trace_token = otel_context.attach(trace.set_span_in_context(span))
        g.request_start = time.monotonic()

        current = span_to_trace_context(span)
        g.trace_id = current.trace_id if current else None
        g.span_id = current.span_id if current else None

    def _after(self, response):
        span = g.get("request_span")
        if span is None:
            return response

        span.set_attribute("http.status_code", response.status_code)
        if response.status_code >= 500:
            span.set_status(Status(StatusCode.ERROR))

        current = span_to_trace_context(span)
        if current is not None:
            inject_trace_context(current, response.headers)
        response.headers[CORRELATION_ID_HEADER] = g.correlation_id

        if self.logger:
            duration_ms = (time.monotonic() - g.request_start) * 1000
            log_method = self.logger.warn if response.status_code >= 400 else self.logger.info
            log_method(
                f"{request.method} {request.path} {response.status_code}",
                {
                    "method": request.method,
                    "path": request.path,
                    "statusCode": response.status_code,
                    "durationMs": round(duration_ms, 2),
                },
            )

        return response

    def _teardown(self, exc=None) -> None:
        span = g.pop("request_span", None)
        token = g.pop("trace_token", None)
        if span is not None:
            if exc is not None:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.end()
        if token is not None:
            otel_context.detach(token)
        Logger().clear_correlation_id()
