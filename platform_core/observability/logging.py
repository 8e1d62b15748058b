"""
Structured JSON logging with PII scrubbing and correlation IDs.

``Logger`` is a process-wide singleton.  Every entry is a single JSON object
on stdout with the keys ``timestamp``, ``level``, ``service``, ``message``
and, when present, ``correlationId``, ``userId``, ``workspaceId``,
``stackTrace`` and ``context``.  Messages, context values and stack traces
are scrubbed with the configured PII patterns before they are written.

Usage::

    logger = Logger()
    logger.initialize(LoggerConfig(service_name="platform-shell", patterns=[...]))
    logger.set_correlation_id(generate_correlation_id())
    logger.info("Publishing draft", {"draftId": "draft_123"})
    logger.error("Failed to connect", {"service": "twitter-api"}, exc)

Logging never raises into the caller: using the logger before
``initialize`` warns and drops the entry, and any failure while building or
writing an entry goes to the diagnostic log.
"""

import json
import logging
import sys
import threading
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Protocol,
    Sequence,
)

import requests

from ..config import detect_runtime, is_production
from ..constants import (
    APP_VERSION,
    CORRELATION_SESSION_KEY,
    PII_PATTERNS_FETCH_TIMEOUT_MS,
    RUNTIME_BROWSER,
    RUNTIME_MOBILE,
    RUNTIME_SERVER,
)
from .correlation import is_valid_correlation_id
from .patterns import PiiPattern, coerce_patterns
from .pii import apply_patterns, scrub

logger = logging.getLogger(__name__)

SINK_LOGGER_NAME = "platform_core.sink"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


# ── Correlation ID storage ───────────────────────────────────────


class CorrelationStore(Protocol):
    """Where the current correlation id lives for one runtime."""

    def get(self) -> Optional[str]: ...

    def set(self, value: Optional[str]) -> None: ...


_correlation_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_module_correlation_id: Optional[str] = None
_process_session: Dict[str, str] = {}


class ContextVarCorrelationStore:
    """Server runtime: isolated per thread and per asyncio task."""

    def get(self) -> Optional[str]:
        return _correlation_var.get()

    def set(self, value: Optional[str]) -> None:
        _correlation_var.set(value)


class SessionCorrelationStore:
    """Browser runtime: kept in the host's per-session storage."""

    def __init__(self, session: Optional[MutableMapping[str, Any]] = None) -> None:
        self.session = _process_session if session is None else session

    def get(self) -> Optional[str]:
        try:
            return self.session.get(CORRELATION_SESSION_KEY)
        except Exception as exc:
            logger.warning("[Logger] Failed to retrieve correlation ID from session: %s", exc)
            return None

    def set(self, value: Optional[str]) -> None:
        try:
            if value is None:
                self.session.pop(CORRELATION_SESSION_KEY, None)
            else:
                self.session[CORRELATION_SESSION_KEY] = value
        except Exception as exc:
            logger.warning("[Logger] Failed to store correlation ID in session: %s", exc)


class ModuleCorrelationStore:
    """Mobile runtime: a single module-level value."""

    def get(self) -> Optional[str]:
        return _module_correlation_id

    def set(self, value: Optional[str]) -> None:
        global _module_correlation_id
        _module_correlation_id = value


def build_correlation_store(
    runtime: str, session: Optional[MutableMapping[str, Any]] = None
) -> CorrelationStore:
    """Pick the correlation store for *runtime*; unknown names get the server one."""
    if runtime == RUNTIME_BROWSER:
        return SessionCorrelationStore(session)
    if runtime == RUNTIME_MOBILE:
        return ModuleCorrelationStore()
    if runtime != RUNTIME_SERVER:
        logger.warning("[Logger] Unknown runtime %r; using server correlation storage", runtime)
    return ContextVarCorrelationStore()


# ── Entries & config ─────────────────────────────────────────────


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")


@dataclass
class LogEntry:
    """One structured log line."""

    timestamp: str
    level: str
    service: str
    message: str
    correlation_id: Optional[str] = None
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None
    stack_trace: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: camelCase keys, absent optional fields omitted."""
        fields = [
            ("timestamp", self.timestamp),
            ("level", self.level),
            ("correlationId", self.correlation_id),
            ("userId", self.user_id),
            ("workspaceId", self.workspace_id),
            ("service", self.service),
            ("message", self.message),
            ("stackTrace", self.stack_trace),
            ("context", self.context),
        ]
        return {key: value for key, value in fields if value is not None}

    def to_json(self, patterns: Sequence[Any] = ()) -> str:
        """Compact JSON; values the encoder cannot handle are stringified and scrubbed."""

        def _default(obj: Any) -> str:
            return apply_patterns(str(obj), patterns)

        return json.dumps(self.to_dict(), default=_default, ensure_ascii=False, separators=(",", ":"))


@dataclass
class LoggerConfig:
    """One-time initialization settings for :class:`Logger`.

    ``patterns`` apply immediately and remain in effect unless a fetch from
    ``pii_patterns_url`` returns a valid, non-empty replacement set.
    """

    service_name: str
    patterns: List[Any] = field(default_factory=list)
    pii_patterns_url: Optional[str] = None
    pii_patterns_fetch_timeout_ms: int = PII_PATTERNS_FETCH_TIMEOUT_MS
    production: Optional[bool] = None
    runtime: Optional[str] = None
    session_store: Optional[MutableMapping[str, Any]] = None


# ── JSON Formatter ───────────────────────────────────────────────


class JsonFormatter(logging.Formatter):
    """Emit diagnostic records as single-line JSON (``LOG_FORMAT=json``)."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "version": APP_VERSION,
            "thread": record.threadName,
        }

        instance = Logger._instance
        if instance is not None:
            entry["service"] = instance.service_name
            correlation_id = instance.get_correlation_id()
            if correlation_id:
                entry["correlationId"] = correlation_id

        # Add source location for DEBUG / ERROR+
        if record.levelno <= logging.DEBUG or record.levelno >= logging.ERROR:
            entry["func"] = record.funcName
            entry["line"] = record.lineno

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
            entry["error_type"] = record.exc_info[0].__name__

        return json.dumps(entry, default=str, ensure_ascii=False)


class _StdoutHandler(logging.StreamHandler):
    """StreamHandler bound to whatever ``sys.stdout`` is when a record is emitted."""

    def __init__(self) -> None:
        super().__init__(sys.stdout)

    @property
    def stream(self):
        return sys.stdout

    @stream.setter
    def stream(self, value) -> None:
        pass


def _build_sink() -> logging.Logger:
    sink = logging.getLogger(SINK_LOGGER_NAME)
    sink.setLevel(logging.DEBUG)
    sink.propagate = False
    for handler in list(sink.handlers):
        sink.removeHandler(handler)
    handler = _StdoutHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    sink.addHandler(handler)
    return sink


# ── Logger ───────────────────────────────────────────────────────


class Logger:
    """Singleton structured logger.

    Must be initialized once; later ``initialize`` calls are ignored with a
    warning because several modules may race to set it up.
    """

    _instance: Optional["Logger"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "Logger":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._constructed = False
            return cls._instance

    def __init__(self) -> None:
        if self._constructed:
            return
        self._constructed = True
        self._initialized = False
        self._service_name = ""
        self._patterns: List[Any] = []
        self._production = False
        self._runtime = RUNTIME_SERVER
        self._store: CorrelationStore = ContextVarCorrelationStore()
        self._sink: Optional[logging.Logger] = None
        self._fetch_thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()

    # ── Lifecycle ────────────────────────────────────────────────

    def initialize(self, config: LoggerConfig) -> None:
        """Configure service name, patterns, runtime storage and output sink."""
        if self._initialized:
            logger.warning("[Logger] Already initialized; skipping")
            return

        from ..utils import setup_logger

        setup_logger()

        self._service_name = config.service_name
        self._production = is_production() if config.production is None else config.production
        self._runtime = config.runtime or detect_runtime()
        self._store = build_correlation_store(self._runtime, config.session_store)
        self._patterns = list(config.patterns or [])
        self._sink = _build_sink()
        self._initialized = True

        if config.pii_patterns_url:
            self._fetch_thread = threading.Thread(
                target=self._fetch_patterns,
                args=(config.pii_patterns_url, config.pii_patterns_fetch_timeout_ms),
                name="pii-pattern-fetch",
                daemon=True,
            )
            self._fetch_thread.start()

    @classmethod
    def reset(cls) -> None:
        """Discard all logger state (tests only)."""
        with cls._lock:
            instance = cls._instance
            cls._instance = None
        if instance is not None:
            instance._store.set(None)
        ContextVarCorrelationStore().set(None)
        ModuleCorrelationStore().set(None)
        _process_session.pop(CORRELATION_SESSION_KEY, None)
        sink = logging.getLogger(SINK_LOGGER_NAME)
        for handler in list(sink.handlers):
            sink.removeHandler(handler)

    def wait_for_patterns(self, timeout: Optional[float] = None) -> bool:
        """Block until a pending pattern fetch finishes; ``True`` if none is running."""
        thread = self._fetch_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def patterns(self) -> List[Any]:
        with self._state_lock:
            return list(self._patterns)

    @property
    def is_production(self) -> bool:
        return self._production

    @property
    def runtime(self) -> str:
        return self._runtime

    # ── Correlation IDs ──────────────────────────────────────────

    def set_correlation_id(self, correlation_id: str) -> None:
        """Bind *correlation_id* to the current request/session."""
        if not is_valid_correlation_id(correlation_id):
            logger.warning("[Logger] Ignoring invalid correlation ID %r", correlation_id)
            return
        self._store.set(correlation_id)

    def get_correlation_id(self) -> Optional[str]:
        return self._store.get()

    def clear_correlation_id(self) -> None:
        self._store.set(None)

    @contextmanager
    def correlation_scope(self, correlation_id: str) -> Iterator[None]:
        """Bind *correlation_id* for the block, then restore the previous one."""
        previous = self.get_correlation_id()
        self.set_correlation_id(correlation_id)
        try:
            yield
        finally:
            self._store.set(previous)

    # ── Log methods ──────────────────────────────────────────────

    def debug(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        """Log a debug message; suppressed in production."""
        if self._production:
            return
        self._log("debug", message, context)

    def info(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self._log("info", message, context)

    def warn(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        self._log("warn", message, context)

    warning = warn

    def error(
        self,
        message: str,
        context: Optional[Mapping[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Log an error; *error* contributes a scrubbed ``stackTrace``."""
        self._log("error", message, context, error)

    # ── Internals ────────────────────────────────────────────────

    def _log(
        self,
        level: str,
        message: str,
        context: Optional[Mapping[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if not self._initialized or self._sink is None:
            logger.warning("[Logger] Not initialized; call Logger().initialize() first")
            return

        try:
            entry = self._create_entry(level, message, context, error)
            self._sink.log(_LEVELS[level], entry.to_json(self.patterns))
        except Exception as exc:
            logger.warning("[Logger] Failed to write %s entry: %s", level, exc)

    def _create_entry(
        self,
        level: str,
        message: str,
        context: Optional[Mapping[str, Any]],
        error: Optional[BaseException],
    ) -> LogEntry:
        patterns = self.patterns

        user_id = workspace_id = None
        scrubbed_context = None
        if context:
            remaining = dict(context)
            user_id = remaining.pop("userId", None)
            workspace_id = remaining.pop("workspaceId", None)
            if remaining:
                scrubbed_context = scrub(remaining, patterns)

        stack_trace = None
        if level == "error" and error is not None:
            formatted = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            stack_trace = apply_patterns(formatted, patterns)

        return LogEntry(
            timestamp=_utc_timestamp(),
            level=level,
            service=self._service_name,
            message=apply_patterns(str(message), patterns),
            correlation_id=self.get_correlation_id(),
            user_id=user_id,
            workspace_id=workspace_id,
            stack_trace=stack_trace,
            context=scrubbed_context,
        )

    def _fetch_patterns(self, url: str, timeout_ms: int) -> None:
        """Replace the baseline patterns with a remote set if it is valid."""
        try:
            response = requests.get(url, timeout=timeout_ms / 1000)
            if not 200 <= response.status_code < 300:
                raise ValueError(f"HTTP {response.status_code}")
            data = response.json()
            if not isinstance(data, list) or not data:
                raise ValueError("Invalid pattern format from endpoint")
            remote: List[PiiPattern] = coerce_patterns(data)
        except Exception as exc:
            logger.warning("[Logger] Pattern fetch from %s failed (%s)", url, exc)
            return

        if Logger._instance is not self:
            return  # reset while the request was in flight
        with self._state_lock:
            self._patterns = remote
        logger.info("[Logger] Loaded %d PII patterns from %s", len(remote), url)
