"""
Observability package: PII-safe logging, tracing, and breadcrumbs.

Provides:
- ``Logger`` / ``LoggerConfig``: structured JSON logging with PII scrubbing
  and correlation IDs
- ``initialize_tracer`` / ``create_span`` / ``traced``: spans on the
  OpenTelemetry API
- ``extract_trace_context`` / ``inject_trace_context``: W3C Trace Context
- ``BreadcrumbManager``: bounded trail of recent user interactions
- ``PiiScrubber`` / ``scrub``: redaction of strings, object graphs and log records
- ``RequestTracer``: Flask middleware tying the above to each request
"""

from .patterns import PiiPattern, ValidationResult, validate_pattern, validate_patterns
from .pii import DEFAULT_PII_PATTERNS, PiiScrubber, ScrubOptions, scrub
from .correlation import CorrelationId, generate_correlation_id, is_valid_correlation_id
from .errors import (
    InvalidTraceContextError,
    ObservabilityError,
    TracerAlreadyInitializedError,
    TracerNotInitializedError,
)
from .trace_context import TraceContext, extract_trace_context, inject_trace_context
from .tracing import (
    SpanOptions,
    create_span,
    current_trace_context,
    get_active_span,
    initialize_tracer,
    traced,
    with_span,
)
from .logging import Logger, LoggerConfig
from .breadcrumbs import (
    BreadcrumbConfig,
    BreadcrumbManager,
    ClickBreadcrumb,
    FormSubmitBreadcrumb,
    NavigationBreadcrumb,
    NetworkBreadcrumb,
)
from .middleware import RequestTracer

__all__ = [
    "PiiPattern",
    "ValidationResult",
    "validate_pattern",
    "validate_patterns",
    "DEFAULT_PII_PATTERNS",
    "PiiScrubber",
    "ScrubOptions",
    "scrub",
    "CorrelationId",
    "generate_correlation_id",
    "is_valid_correlation_id",
    "ObservabilityError",
    "InvalidTraceContextError",
    "TracerNotInitializedError",
    "TracerAlreadyInitializedError",
    "TraceContext",
    "extract_trace_context",
    "inject_trace_context",
    "SpanOptions",
    "initialize_tracer",
    "create_span",
    "get_active_span",
    "current_trace_context",
    "with_span",
    "traced",
    "Logger",
    "LoggerConfig",
    "BreadcrumbConfig",
    "BreadcrumbManager",
    "ClickBreadcrumb",
    "NavigationBreadcrumb",
    "FormSubmitBreadcrumb",
    "NetworkBreadcrumb",
    "RequestTracer",
]
