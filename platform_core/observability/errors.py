"""
Exception types raised by the observability package.

Only programming errors surface as exceptions: injecting an invalid trace
context and misusing the tracer lifecycle.  Malformed input data and
external failures are reported through return values and the diagnostic
log instead.
"""


class ObservabilityError(Exception):
    """Base class for observability programming errors."""


class InvalidTraceContextError(ObservabilityError, ValueError):
    """Raised when a trace context with invalid ids or flags is injected."""


class TracerNotInitializedError(ObservabilityError, RuntimeError):
    """Raised when a span is requested before ``initialize_tracer``."""

    def __init__(self) -> None:
        super().__init__(
            "Tracer not initialized. Call initialize_tracer() first before creating spans."
        )


class TracerAlreadyInitializedError(ObservabilityError, RuntimeError):
    """Raised when the tracer is re-initialized under a different service name."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f'Tracer already initialized with service name "{current}". '
            f'Cannot re-initialize with different service name "{requested}".'
        )
