"""
Centralised constants for the platform-core observability package.

All magic numbers, header names, storage keys and default values live here
so they can be imported by any module without circular dependencies.
"""

# ── Version ──────────────────────────────────────────────────────
APP_VERSION = "1.0.0"
DEFAULT_SERVICE_NAME = "platform-core"

# ── W3C Trace Context ────────────────────────────────────────────
TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"
TRACEPARENT_VERSION = "00"
TRACE_ID_HEX_LENGTH = 32  # 128-bit
SPAN_ID_HEX_LENGTH = 16  # 64-bit
MAX_TRACE_FLAGS = 0xFF

# ── Correlation IDs ──────────────────────────────────────────────
CORRELATION_ID_HEADER = "X-Correlation-ID"
CORRELATION_ID_ATTRIBUTE = "correlation.id"
CORRELATION_SESSION_KEY = "__mtsyn_corr_id"

# ── Runtimes ─────────────────────────────────────────────────────
RUNTIME_SERVER = "server"
RUNTIME_BROWSER = "browser"
RUNTIME_MOBILE = "mobile"
SUPPORTED_RUNTIMES = frozenset({RUNTIME_SERVER, RUNTIME_BROWSER, RUNTIME_MOBILE})

# ── PII scrubbing ────────────────────────────────────────────────
DEFAULT_SCRUB_MAX_DEPTH = 50
CIRCULAR_REF_MARKER = "[Circular]"
PII_PATTERNS_FETCH_TIMEOUT_MS = 5000

# ── Breadcrumbs ──────────────────────────────────────────────────
BREADCRUMB_MAX_ITEMS = 20
BREADCRUMB_MAX_SIZE_KB = 5
BREADCRUMB_STORAGE_KEY = "mtsynergy_breadcrumbs"
BREADCRUMB_TYPES = frozenset({"click", "navigation", "form_submit", "network"})

# ── Logging ──────────────────────────────────────────────────────
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB per diagnostic log file
LOG_BACKUP_COUNT = 5
