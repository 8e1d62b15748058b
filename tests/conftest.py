"""
Test fixtures and configuration for pytest
"""

import json
import logging

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# ── OpenTelemetry SDK ────────────────────────────────────────────
# The global provider can only be set once per process, so every test
# shares this exporter and clears it before use.

_EXPORTER = InMemorySpanExporter()
_PROVIDER = TracerProvider()
_PROVIDER.add_span_processor(SimpleSpanProcessor(_EXPORTER))
trace.set_tracer_provider(_PROVIDER)

_ENV_VARS = (
    "APP_ENV",
    "OBSERVABILITY_RUNTIME",
    "SERVICE_NAME",
    "PII_PATTERNS_URL",
    "PII_PATTERNS_FETCH_TIMEOUT_MS",
    "BREADCRUMB_MAX_ITEMS",
    "BREADCRUMB_MAX_SIZE_KB",
    "BREADCRUMB_STORAGE_KEY",
    "BREADCRUMB_STORAGE_DIR",
    "OBSERVABILITY_LOG_DIR",
    "LOG_FORMAT",
)


def _reset_all():
    from platform_core.observability.breadcrumbs import BreadcrumbManager
    from platform_core.observability.logging import Logger
    from platform_core.observability.tracing import reset_tracer

    Logger.reset()
    BreadcrumbManager.reset()
    reset_tracer()
    diag = logging.getLogger("platform_core")
    for handler in list(diag.handlers):
        diag.removeHandler(handler)
        handler.close()


@pytest.fixture(autouse=True)
def _isolated_observability(monkeypatch):
    """Auto-use: clean environment and fresh singletons around every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    _reset_all()
    yield
    _reset_all()


@pytest.fixture
def span_exporter():
    """The session-wide in-memory exporter, emptied for this test."""
    _EXPORTER.clear()
    yield _EXPORTER
    _EXPORTER.clear()


@pytest.fixture
def logger(capsys):
    """An initialized ``Logger`` writing to the captured stdout."""
    from platform_core.observability.logging import Logger, LoggerConfig

    log = Logger()
    log.initialize(LoggerConfig(service_name="test-service", production=False, runtime="server"))
    return log


@pytest.fixture
def read_entries(capsys):
    """Return a callable that parses the JSON lines written to stdout so far."""

    def _read():
        out = capsys.readouterr().out
        return [json.loads(line) for line in out.splitlines() if line.strip()]

    return _read


@pytest.fixture
def sample_patterns():
    """A custom pattern set in wire form"""
    return [
        {
            "name": "email",
            "pattern": r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}",
            "replacement": "[REDACTED-EMAIL]",
        },
        {
            "name": "ssn",
            "pattern": r"\d{3}-\d{2}-\d{4}",
            "replacement": "[REDACTED-SSN]",
        },
    ]
