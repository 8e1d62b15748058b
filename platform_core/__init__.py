"""
Platform Core - observability and PII-safe telemetry
"""

__version__ = "1.0.0"

from .observability import (
    BreadcrumbManager,
    Logger,
    LoggerConfig,
    RequestTracer,
    create_span,
    extract_trace_context,
    generate_correlation_id,
    initialize_tracer,
    inject_trace_context,
)

__all__ = [
    "Logger",
    "LoggerConfig",
    "BreadcrumbManager",
    "RequestTracer",
    "initialize_tracer",
    "create_span",
    "extract_trace_context",
    "inject_trace_context",
    "generate_correlation_id",
]
