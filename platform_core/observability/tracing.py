"""
Distributed tracing: span creation on top of the OpenTelemetry API.

Wraps ``opentelemetry.trace`` so callers get:

1. A single tracer handle bound to one service name per process.
2. A ``correlation.id`` attribute on every span.
3. Explicit parenting from a W3C :class:`TraceContext` (e.g. extracted from
   incoming headers), or implicit parenting on the active span.
4. Helpers to run code with a span active and to read the active span back
   as a ``TraceContext`` for outgoing propagation.

The OpenTelemetry SDK (provider, processors, exporters) is configured by the
host application; without one, the API hands out non-recording spans.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

from opentelemetry import trace
from opentelemetry.trace import (
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
    TraceFlags,
    TraceState,
)

from ..constants import APP_VERSION, CORRELATION_ID_ATTRIBUTE
from .correlation import CorrelationId, generate_correlation_id
from .errors import TracerAlreadyInitializedError, TracerNotInitializedError
from .trace_context import TraceContext

T = TypeVar("T")

AttributeValue = Union[str, int, float, bool]

# ── Tracer state ─────────────────────────────────────────────────

_lock = threading.Lock()
_tracer: Optional[trace.Tracer] = None
_service_name: Optional[str] = None


@dataclass
class SpanOptions:
    """Options for :func:`create_span`.

    ``parent=None`` attaches the span to the active span, if any.
    """

    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    parent: Optional[TraceContext] = None
    correlation_id: Optional[CorrelationId] = None
    kind: SpanKind = SpanKind.INTERNAL


def initialize_tracer(service_name: str) -> None:
    """
    Bind the module tracer to *service_name*.

    Call once at startup, after the OpenTelemetry SDK is configured.
    Repeating the call with the same name is a no-op.

    Raises:
        ValueError: If *service_name* is empty.
        TracerAlreadyInitializedError: If already bound to a different name.
    """
    global _tracer, _service_name

    if not isinstance(service_name, str) or not service_name:
        raise ValueError("service_name must be a non-empty string")

    with _lock:
        if _service_name is not None:
            if _service_name != service_name:
                raise TracerAlreadyInitializedError(_service_name, service_name)
            return
        _tracer = trace.get_tracer(service_name, APP_VERSION)
        _service_name = service_name


def get_service_name() -> Optional[str]:
    """Return the service name the tracer is bound to, or ``None``."""
    return _service_name


def reset_tracer() -> None:
    """Forget the tracer binding (tests only)."""
    global _tracer, _service_name
    with _lock:
        _tracer = None
        _service_name = None


# ── Context conversion ───────────────────────────────────────────


def _to_span_context(parent: TraceContext) -> SpanContext:
    trace_state = (
        TraceState.from_header([parent.tracestate]) if parent.tracestate else TraceState()
    )
    return SpanContext(
        trace_id=int(parent.trace_id, 16),
        span_id=int(parent.span_id, 16),
        is_remote=True,
        trace_flags=TraceFlags(parent.trace_flags),
        trace_state=trace_state,
    )


def span_to_trace_context(span: Span) -> Optional[TraceContext]:
    """Describe *span* as a :class:`TraceContext`; ``None`` for invalid spans."""
    ctx = span.get_span_context()
    if not ctx.is_valid:
        return None
    tracestate = ctx.trace_state.to_header() if ctx.trace_state else ""
    return TraceContext(
        trace_id=trace.format_trace_id(ctx.trace_id),
        span_id=trace.format_span_id(ctx.span_id),
        trace_flags=int(ctx.trace_flags),
        tracestate=tracestate or None,
    )


# ── Spans ────────────────────────────────────────────────────────


def create_span(name: str, options: Optional[SpanOptions] = None) -> Span:
    """
    Start a new span.

    The caller owns the span and must ``end()`` it.  It is not made active;
    use :func:`with_span` or :func:`traced` for that.

    Args:
        name: Operation name, e.g. ``"http_request"``.
        options: Attributes, explicit parent and correlation id.

    Returns:
        The started span, carrying a ``correlation.id`` attribute.

    Raises:
        TracerNotInitializedError: If :func:`initialize_tracer` was not called.
    """
    tracer = _tracer
    if tracer is None:
        raise TracerNotInitializedError()

    options = options or SpanOptions()
    correlation_id = options.correlation_id or generate_correlation_id()
    attributes: Dict[str, AttributeValue] = dict(options.attributes)
    attributes[CORRELATION_ID_ATTRIBUTE] = str(correlation_id)

    if options.parent is not None:
        parent_ctx = trace.set_span_in_context(NonRecordingSpan(_to_span_context(options.parent)))
    else:
        parent_ctx = None  # current context, so the active span becomes the parent

    return tracer.start_span(
        name, context=parent_ctx, kind=options.kind, attributes=attributes
    )


def get_active_span() -> Optional[Span]:
    """Return the span active in the current context, or ``None``."""
    span = trace.get_current_span()
    if not span.get_span_context().is_valid:
        return None
    return span


def current_trace_context() -> Optional[TraceContext]:
    """Return the active span as a :class:`TraceContext`, or ``None``."""
    span = get_active_span()
    return span_to_trace_context(span) if span is not None else None


def with_span(span: Span, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run ``fn(*args, **kwargs)`` with *span* active.

    The previously active span is restored however ``fn`` exits.  The span
    is not ended.
    """
    with trace.use_span(span, end_on_exit=False):
        return fn(*args, **kwargs)


@contextmanager
def traced(name: str, options: Optional[SpanOptions] = None) -> Iterator[Span]:
    """Create a span, make it active for the block, and end it afterwards.

    Usage::

        with traced("db_query", SpanOptions(attributes={"db.table": "drafts"})):
            ...
    """
    span = create_span(name, options)
    with trace.use_span(span, end_on_exit=True):
        yield span
